"""Blueprint contract tests for /api/v1/wbs."""

import pytest

from wbs_helpers import build_package, load, make_item, set_progress


def _create(client, project_id, name, level, parent_id=None, **extra):
    res = client.post("/api/v1/wbs", json={
        "project_id": project_id,
        "name": name,
        "level": level,
        "parent_id": parent_id,
        **extra,
    })
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestCreateAndList:
    def test_create_returns_201_with_code(self, client, project):
        phase = _create(client, project.id, "Phase", "LEVEL1")
        group = _create(client, project.id, "Group", "LEVEL2", phase["id"])
        assert phase["code"] == "1"
        assert group["code"] == "1.1"
        assert group["level_label"] == "LEVEL2"

    @pytest.mark.parametrize("payload, code", [
        ({"name": "X", "level": 1}, "ERR_VALIDATION_REQUIRED"),
        ({"project_id": 1, "level": 1}, "ERR_VALIDATION_REQUIRED"),
        ({"project_id": 1, "name": "X"}, "ERR_VALIDATION_REQUIRED"),
    ])
    def test_required_fields(self, client, project, payload, code):
        res = client.post("/api/v1/wbs", json=payload)
        assert res.status_code == 400
        assert res.get_json()["code"] == code

    def test_wrong_level_is_invalid_operation(self, client, project):
        res = client.post("/api/v1/wbs", json={"project_id": project.id, "name": "X", "level": 2})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_OPERATION"
        assert body["details"]["reason"] == "root_level"

    def test_unknown_project_is_404(self, client):
        res = client.post("/api/v1/wbs", json={"project_id": 999, "name": "X", "level": 1})
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_non_json_body_rejected(self, client, project):
        res = client.post("/api/v1/wbs", data="name=X", content_type="text/plain")
        assert res.status_code == 415

    def test_list_tree_and_flat(self, client, project):
        build_package(project.id)

        tree = client.get(f"/api/v1/wbs?project_id={project.id}").get_json()["items"]
        assert len(tree) == 1
        assert tree[0]["children"][0]["code"] == "1.1"

        flat = client.get(f"/api/v1/wbs?project_id={project.id}&flat=true").get_json()["items"]
        assert len(flat) == 6

    def test_list_requires_project(self, client):
        res = client.get("/api/v1/wbs")
        assert res.status_code == 400


class TestItemEndpoints:
    def test_get_item(self, client, project):
        tree = build_package(project.id)
        res = client.get(f"/api/v1/wbs/{tree['pkg_a']['id']}")
        assert res.status_code == 200
        assert len(res.get_json()["children"]) == 2

    def test_get_missing_item(self, client, project):
        res = client.get("/api/v1/wbs/missing")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_patch_progress_rolls_up(self, client, project):
        tree = build_package(project.id)
        res = client.patch(f"/api/v1/wbs/{tree['task_a1']['id']}", json={"progress": 50})
        assert res.status_code == 200
        assert res.get_json()["status"] == "IN_PROGRESS"
        assert load(tree["pkg_a"]).progress == 25

    def test_patch_status_rejected(self, client, project):
        tree = build_package(project.id)
        res = client.patch(f"/api/v1/wbs/{tree['task_a1']['id']}", json={"status": "COMPLETED"})
        assert res.status_code == 400
        assert res.get_json()["details"] == {"status": "read-only"}

    def test_patch_progress_on_parent_rejected(self, client, project):
        tree = build_package(project.id)
        res = client.patch(f"/api/v1/wbs/{tree['group']['id']}", json={"progress": 10})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_OPERATION"

    def test_delete_requires_confirm(self, client, project):
        tree = build_package(project.id)

        preview = client.delete(f"/api/v1/wbs/{tree['pkg_a']['id']}").get_json()
        assert preview["preview"] is True
        assert preview["deleted_count"] == 3
        assert load(tree["pkg_a"]) is not None

        res = client.delete(f"/api/v1/wbs/{tree['pkg_a']['id']}?confirm=true")
        assert res.status_code == 200
        assert res.get_json() == {"id": tree["pkg_a"]["id"], "deleted_count": 3}
        assert load(tree["pkg_a"]) is None


class TestLevelEndpoint:
    def test_promote_and_demote(self, client, project):
        tree = build_package(project.id)
        url = f"/api/v1/wbs/{tree['task_a2']['id']}/level"

        up = client.patch(url, json={"direction": "up"})
        assert up.status_code == 200
        assert up.get_json()["new_code"] == "1.1.3"

        down = client.patch(url, json={"direction": "down"})
        assert down.status_code == 200
        assert down.get_json()["new_level"] == 4

    def test_demote_leaf_level_is_400(self, client, project):
        tree = build_package(project.id)
        res = client.patch(f"/api/v1/wbs/{tree['task_a2']['id']}/level", json={"direction": "down"})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_OPERATION"
        assert "cannot demote leaf-level" in body["error"]

    def test_promote_root_is_400(self, client, project):
        root = make_item(project.id, "Phase", 1)
        res = client.patch(f"/api/v1/wbs/{root['id']}/level", json={"direction": "up"})
        assert res.status_code == 400
        assert res.get_json()["details"]["reason"] == "promote_root"

    @pytest.mark.parametrize("payload, status", [({}, 400), ({"direction": "left"}, 400)])
    def test_bad_direction(self, client, project, payload, status):
        tree = build_package(project.id)
        res = client.patch(f"/api/v1/wbs/{tree['pkg_b']['id']}/level", json=payload)
        assert res.status_code == status


class TestProjectEndpoints:
    def test_stats(self, client, project):
        tree = build_package(project.id)
        set_progress(tree["task_a1"], 100)

        body = client.get(f"/api/v1/wbs/stats?project_id={project.id}").get_json()

        assert body["total"] == 2
        assert body["completed"] == 1
        assert body["overall_progress"] == 50.0

    def test_integrity_and_rebuild(self, client, project):
        from wbs_tracker.models import db

        tree = build_package(project.id)
        row = load(tree["pkg_b"])
        row.code = "5"
        db.session.commit()

        report = client.get(f"/api/v1/wbs/integrity?project_id={project.id}").get_json()
        assert report["ok"] is False
        assert report["problems"]

        rebuilt = client.post("/api/v1/wbs/rebuild", json={"project_id": project.id})
        assert rebuilt.status_code == 200

        report = client.get(f"/api/v1/wbs/integrity?project_id={project.id}").get_json()
        assert report == {"project_id": project.id, "ok": True, "problems": []}

    def test_structural_integrity_maps_to_409(self, client, project):
        from wbs_tracker.models import db

        tree = build_package(project.id)
        phase = load(tree["phase"])
        phase.parent_id = tree["task_a1"]["id"]
        db.session.commit()

        res = client.patch(f"/api/v1/wbs/{tree['task_a2']['id']}", json={"progress": 10})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_STRUCTURAL_INTEGRITY"


class TestHealth:
    def test_health(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_timing_headers(self, client):
        res = client.get("/api/v1/health")
        assert "X-Request-Duration-Ms" in res.headers
        assert res.headers["X-Request-ID"]

    def test_unknown_api_path_is_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
