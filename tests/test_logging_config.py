"""Tests for structured logging configuration and mutation logging."""

import json
import logging

from wbs_tracker.middleware.logging_config import JSONFormatter, ReadableFormatter

from wbs_helpers import build_package
import wbs_tracker.services.wbs_service as wbs


def _record(msg="hello", **extra):
    record = logging.LogRecord("wbs_tracker.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_keys():
    out = json.loads(JSONFormatter().format(_record(project_id=7, duration_ms=12.5, unknown="x")))
    assert out["message"] == "hello"
    assert out["level"] == "INFO"
    assert out["project_id"] == 7
    assert out["duration_ms"] == 12.5
    assert "unknown" not in out


def test_readable_formatter_shows_scope_and_duration():
    line = ReadableFormatter().format(_record(project_id=3, duration_ms=41.2))
    assert "hello" in line
    assert "(project 3)" in line
    assert "[41ms]" in line


def test_testing_app_uses_readable_formatter(app):
    formatters = [h.formatter for h in logging.getLogger().handlers]
    assert any(isinstance(f, ReadableFormatter) for f in formatters)
    assert not any(isinstance(f, JSONFormatter) for f in formatters)


def test_mutation_logged_with_project_id(project, caplog):
    tree = build_package(project.id)
    caplog.set_level(logging.INFO, logger="wbs_tracker.services.wbs_service")

    wbs.promote(tree["task_a2"]["id"])

    records = [r for r in caplog.records if getattr(r, "event_type", None) == "wbs.promote"]
    assert len(records) == 1
    assert records[0].project_id == project.id
    assert records[0].levelname == "INFO"


def test_slow_mutation_logged_as_warning(app, project, caplog):
    tree = build_package(project.id)
    caplog.set_level(logging.INFO, logger="wbs_tracker.services.wbs_service")
    app.config["WBS_SLOW_MUTATION_MS"] = -1
    try:
        wbs.delete_item(tree["task_a1"]["id"])
    finally:
        app.config["WBS_SLOW_MUTATION_MS"] = 500

    assert "Slow WBS delete" in caplog.text


def test_mutation_log_carries_item_id(project, caplog):
    tree = build_package(project.id)
    caplog.set_level(logging.INFO, logger="wbs_tracker.services.wbs_service")

    wbs.demote(tree["pkg_b"]["id"])
    wbs.rebuild_project(project.id)

    by_event = {r.event_type: r for r in caplog.records if getattr(r, "event_type", None)}
    assert by_event["wbs.demote"].item_id == tree["pkg_b"]["id"]
    assert by_event["wbs.rebuild"].item_id is None
    assert f"project {project.id}" in by_event["wbs.rebuild"].getMessage()

    out = json.loads(JSONFormatter().format(by_event["wbs.demote"]))
    assert out["item_id"] == tree["pkg_b"]["id"]
    assert "item_id" not in json.loads(JSONFormatter().format(by_event["wbs.rebuild"]))
