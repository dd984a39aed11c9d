"""Tree-building helpers shared by the WBS test modules."""

from wbs_tracker.models import db
from wbs_tracker.models.wbs import WbsItem
import wbs_tracker.services.wbs_service as wbs


def make_item(project_id, name, level, parent=None, **extra):
    """Create an item through the service and return its dict."""
    data = {
        "name": name,
        "level": level,
        "parent_id": parent["id"] if parent else None,
        **extra,
    }
    return wbs.create_item(project_id, data)


def set_progress(item, progress):
    return wbs.update_item(item["id"], {"progress": progress})


def load(item):
    """Fresh WbsItem row for an item dict (or id)."""
    item_id = item if isinstance(item, str) else item["id"]
    return db.session.get(WbsItem, item_id)


def codes(project_id):
    """{name: code} for every item in the project."""
    rows = db.session.execute(
        db.select(WbsItem).where(WbsItem.project_id == project_id)
    ).scalars()
    return {row.name: row.code for row in rows}


def build_package(project_id):
    """
    1         Phase
    1.1       Group
    1.1.1     Package A
    1.1.1.1   Task A1
    1.1.1.2   Task A2
    1.1.2     Package B (leaf)
    """
    phase = make_item(project_id, "Phase", 1)
    group = make_item(project_id, "Group", 2, phase)
    pkg_a = make_item(project_id, "Package A", 3, group)
    task_a1 = make_item(project_id, "Task A1", 4, pkg_a)
    task_a2 = make_item(project_id, "Task A2", 4, pkg_a)
    pkg_b = make_item(project_id, "Package B", 3, group)
    return {
        "phase": phase,
        "group": group,
        "pkg_a": pkg_a,
        "task_a1": task_a1,
        "task_a2": task_a2,
        "pkg_b": pkg_b,
    }
