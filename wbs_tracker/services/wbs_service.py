"""
WBS service layer — Structural Mutator and item lifecycle.

Orchestrates every change to a project's work breakdown tree:
  - promote / demote / change_level  — move an item one level up or down
  - delete_item / preview_delete     — cascade delete of a whole subtree
  - create_item / update_item        — add items, edit leaf progress & metadata
  - get_item / list_items / wbs_stats / check_integrity — read side
  - rebuild_project                  — renumber all codes and recompute rollups

Each mutation runs inside one WbsItemStore.transaction(): the reparent
write, subtree code regeneration, sibling renumbering and every ancestor
rollup commit together or not at all. Preconditions are checked before the
first write.

Blueprints stay HTTP-only; this module raises the typed exceptions from
wbs_tracker.core.exceptions and returns plain dicts.
"""

import logging
import math
import time
from datetime import date

from flask import current_app

from wbs_tracker.core.exceptions import InvalidOperationError, ValidationError
from wbs_tracker.models.wbs import (
    MAX_LEVEL,
    MIN_LEVEL,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    WbsItem,
    level_label,
)
from wbs_tracker.services.code_generator import (
    child_code,
    next_code,
    regenerate_subtree,
    renumber_children,
)
from wbs_tracker.services.progress_rollup import (
    derive_status,
    recompute_ancestors,
    recompute_project,
    weighted_progress,
)
from wbs_tracker.services.wbs_store import WbsItemStore
from wbs_tracker.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("description", "deliverable_name", "deliverable_link")
_DATE_FIELDS = ("start_date", "end_date")
# Structural and derived fields only change through the tree engine.
_READ_ONLY_FIELDS = ("code", "level", "parent_id", "project_id", "status", "order", "sort_order")


# ── Input parsing ────────────────────────────────────────────────────────────

def _parse_level(value) -> int:
    """Accept 1-4, "1"-"4", "L1"-"L4" or "LEVEL1"-"LEVEL4"."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("level is required", details={"level": "required"})
    if isinstance(value, int):
        level = value
    elif isinstance(value, str):
        text = value.strip().upper()
        for prefix in ("LEVEL", "L"):
            if text.startswith(prefix):
                text = text[len(prefix):]
                break
        if not text.isdigit():
            raise ValidationError(f"Invalid level: {value!r}", details={"level": "LEVEL1..LEVEL4"})
        level = int(text)
    else:
        raise ValidationError(f"Invalid level: {value!r}", details={"level": "LEVEL1..LEVEL4"})

    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValidationError(f"Invalid level: {value!r}", details={"level": "LEVEL1..LEVEL4"})
    return level


def _parse_weight(value) -> float:
    if value is None or value == "":
        return 1.0
    if isinstance(value, bool):
        raise ValidationError("weight must be a positive number", details={"weight": "positive number"})
    try:
        weight = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("weight must be a positive number", details={"weight": "positive number"}) from exc
    if not math.isfinite(weight) or weight <= 0:
        raise ValidationError("weight must be a positive number", details={"weight": "positive number"})
    return weight


def _parse_progress(value) -> int:
    error = ValidationError("progress must be an integer between 0 and 100", details={"progress": "0..100"})
    if isinstance(value, bool) or value is None:
        raise error
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise error from exc
    if not number.is_integer() or not 0 <= number <= 100:
        raise error
    return int(number)


def _parse_dates(data: dict) -> dict:
    parsed = {}
    for field in _DATE_FIELDS:
        if field in data:
            try:
                parsed[field] = parse_date_input(data[field])
            except ValueError as exc:
                raise ValidationError(str(exc), details={field: "invalid date"}) from exc
    return parsed


# ── Guards & logging ─────────────────────────────────────────────────────────

def _guard_reparent(item, new_parent_id, descendant_ids) -> None:
    """Reject moves that would make an item its own ancestor."""
    if new_parent_id == item.id:
        raise InvalidOperationError(
            "cannot set self as parent", reason="self_parent", item_id=item.id,
        )
    if new_parent_id is not None and new_parent_id in descendant_ids:
        raise InvalidOperationError(
            "cannot move an item under its own descendant",
            reason="descendant_parent",
            item_id=item.id,
        )


def _log_mutation(operation: str, item_id, project_id: int, started: float, summary: str) -> None:
    duration_ms = (time.perf_counter() - started) * 1000
    subject = item_id or f"project {project_id}"
    extra = {
        "project_id": project_id,
        "item_id": item_id,
        "duration_ms": duration_ms,
        "event_type": f"wbs.{operation}",
    }
    threshold = current_app.config.get("WBS_SLOW_MUTATION_MS", 500)
    if duration_ms > threshold:
        logger.warning("Slow WBS %s on %s: %s (%.0fms)", operation, subject, summary, duration_ms, extra=extra)
    else:
        logger.info("WBS %s on %s: %s", operation, subject, summary, extra=extra)


# ═════════════════════════════════════════════════════════════════════════════
# Structural mutations
# ═════════════════════════════════════════════════════════════════════════════

def promote(item_id: str, *, store: WbsItemStore | None = None) -> dict:
    """
    Move an item one level up: it becomes the last sibling of its parent.

    The item's descendants move with it and shift one level up as well.
    The old parent's remaining children are renumbered, then both the old
    and the new parent chains are rolled up.

    Returns:
        {"id", "old_level", "new_level", "new_code"}

    Raises:
        NotFoundError, InvalidOperationError, StructuralIntegrityError, StoreError
    """
    store = store or WbsItemStore()
    started = time.perf_counter()

    with store.transaction():
        item = store.get(item_id)
        if item.level <= MIN_LEVEL:
            raise InvalidOperationError("cannot promote root", reason="promote_root", item_id=item.id)
        if item.parent_id is None:
            raise InvalidOperationError("no parent", reason="no_parent", item_id=item.id)

        old_parent = store.get_parent(item)
        new_parent_id = old_parent.parent_id
        if new_parent_id is not None:
            store.lock(new_parent_id)
        _guard_reparent(item, new_parent_id, {d.id for d in store.descendants(item.id)})

        project_id = item.project_id
        old_level = item.level
        new_level = old_level - 1
        new_code = next_code(store, project_id, new_parent_id)
        new_order = store.next_order(project_id, new_parent_id)

        store.update(
            item,
            level=new_level,
            parent_id=new_parent_id,
            code=new_code,
            sort_order=new_order,
        )
        regenerate_subtree(store, item.id, new_code, level_delta=-1)
        renumber_children(store, project_id, old_parent.id)

        recompute_ancestors(store, old_parent.id)
        if new_parent_id is not None:
            recompute_ancestors(store, new_parent_id)

        result = {
            "id": item_id,
            "old_level": old_level,
            "new_level": new_level,
            "new_code": new_code,
        }

    _log_mutation("promote", item_id, project_id, started, f"L{old_level} → L{new_level} ({new_code})")
    return result


def demote(item_id: str, *, store: WbsItemStore | None = None) -> dict:
    """
    Move an item one level down: it becomes the last child of its previous sibling.

    The previous sibling is the closest sibling at the same level with a
    smaller order. The whole subtree shifts one level deeper, so a demote
    that would push any descendant past LEVEL4 is rejected. That check also
    bounds the item's own new level, so no clamp is applied.

    Returns:
        {"id", "old_level", "new_level", "new_code"}

    Raises:
        NotFoundError, InvalidOperationError, StructuralIntegrityError, StoreError
    """
    store = store or WbsItemStore()
    started = time.perf_counter()

    with store.transaction():
        item = store.get(item_id)
        if item.level >= MAX_LEVEL:
            raise InvalidOperationError(
                "cannot demote leaf-level (L4)", reason="demote_leaf_level", item_id=item.id,
            )

        previous = store.previous_sibling(item)
        if previous is None:
            raise InvalidOperationError(
                "no previous sibling", reason="no_previous_sibling", item_id=item.id,
            )
        previous = store.lock(previous.id)

        subtree = list(store.walk(item.id))
        max_depth = max((depth for _node, depth in subtree), default=0)
        if item.level + 1 + max_depth > MAX_LEVEL:
            raise InvalidOperationError(
                f"cannot demote: descendants would exceed {level_label(MAX_LEVEL)}",
                reason="subtree_too_deep",
                item_id=item.id,
            )
        _guard_reparent(item, previous.id, {node.id for node, _depth in subtree})

        project_id = item.project_id
        old_parent_id = item.parent_id
        old_level = item.level
        new_level = old_level + 1
        new_code = next_code(store, project_id, previous.id)
        new_order = store.next_order(project_id, previous.id)

        store.update(
            item,
            level=new_level,
            parent_id=previous.id,
            code=new_code,
            sort_order=new_order,
        )
        regenerate_subtree(store, item.id, new_code, level_delta=1)
        renumber_children(store, project_id, old_parent_id)

        if old_parent_id is not None:
            recompute_ancestors(store, old_parent_id)
        recompute_ancestors(store, previous.id)

        result = {
            "id": item_id,
            "old_level": old_level,
            "new_level": new_level,
            "new_code": new_code,
        }

    _log_mutation("demote", item_id, project_id, started, f"L{old_level} → L{new_level} ({new_code})")
    return result


def change_level(item_id: str, direction: str, *, store: WbsItemStore | None = None) -> dict:
    """Dispatch "up" to promote() and "down" to demote()."""
    if direction == "up":
        return promote(item_id, store=store)
    if direction == "down":
        return demote(item_id, store=store)
    raise ValidationError(
        "direction must be 'up' or 'down'", details={"direction": "up | down"},
    )


def delete_item(item_id: str, *, store: WbsItemStore | None = None) -> dict:
    """
    Delete an item together with its entire subtree.

    The former parent's remaining children are renumbered and its progress
    is rolled up again without the removed subtree.

    Returns:
        {"id", "deleted_count"} — deleted_count includes the item itself.
    """
    store = store or WbsItemStore()
    started = time.perf_counter()

    with store.transaction():
        item = store.get(item_id)
        project_id = item.project_id
        parent_id = item.parent_id
        if parent_id is not None:
            store.get_parent(item)

        deleted_count = store.delete(item)
        renumber_children(store, project_id, parent_id)
        if parent_id is not None:
            recompute_ancestors(store, parent_id)

    _log_mutation("delete", item_id, project_id, started, f"{deleted_count} item(s) removed")
    return {"id": item_id, "deleted_count": deleted_count}


def preview_delete(item_id: str, *, store: WbsItemStore | None = None) -> dict:
    """Describe what delete_item() would remove, without deleting anything."""
    store = store or WbsItemStore()
    item = store.get(item_id)
    descendants = store.descendants(item.id)

    by_level = {label: 0 for label in (level_label(n) for n in range(MIN_LEVEL, MAX_LEVEL + 1))}
    by_level[level_label(item.level)] += 1
    for node in descendants:
        by_level[level_label(node.level)] = by_level.get(level_label(node.level), 0) + 1

    return {
        "preview": True,
        "target": {"id": item.id, "code": item.code, "name": item.name, "level": item.level},
        "descendants_count": len(descendants),
        "deleted_count": len(descendants) + 1,
        "by_level": by_level,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Item lifecycle
# ═════════════════════════════════════════════════════════════════════════════

def create_item(project_id: int, data: dict, *, store: WbsItemStore | None = None) -> dict:
    """
    Create a leaf item at the end of its parent's children (or as a new root).

    LEVEL1 items take no parent; any other level needs a parent in the same
    project exactly one level shallower.

    Returns:
        Serialized item dict.
    """
    store = store or WbsItemStore()

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    level = _parse_level(data.get("level"))
    weight = _parse_weight(data.get("weight"))
    dates = _parse_dates(data)
    if dates.get("start_date") and dates.get("end_date") and dates["end_date"] < dates["start_date"]:
        raise ValidationError("end_date must not be before start_date", details={"end_date": "before start_date"})
    parent_id = data.get("parent_id") or None

    with store.transaction():
        store.get_project(project_id)

        if parent_id is None:
            if level != MIN_LEVEL:
                raise InvalidOperationError(
                    f"top-level items must be {level_label(MIN_LEVEL)}", reason="root_level",
                )
        else:
            parent = store.lock(parent_id)
            if parent.project_id != project_id:
                raise InvalidOperationError(
                    "parent belongs to another project", reason="foreign_parent", item_id=parent_id,
                )
            if parent.level >= MAX_LEVEL:
                raise InvalidOperationError(
                    f"{level_label(MAX_LEVEL)} items cannot have children",
                    reason="parent_is_leaf_level",
                    item_id=parent_id,
                )
            if level != parent.level + 1:
                raise InvalidOperationError(
                    f"only {level_label(parent.level + 1)} items can be added under "
                    f"a {level_label(parent.level)} parent",
                    reason="level_mismatch",
                    item_id=parent_id,
                )

        item = WbsItem(
            project_id=project_id,
            parent_id=parent_id,
            level=level,
            code=next_code(store, project_id, parent_id),
            sort_order=store.next_order(project_id, parent_id),
            name=name,
            description=data.get("description") or None,
            weight=weight,
            progress=0,
            status=STATUS_PENDING,
            start_date=dates.get("start_date"),
            end_date=dates.get("end_date"),
            deliverable_name=data.get("deliverable_name") or None,
            deliverable_link=data.get("deliverable_link") or None,
        )
        store.create(item)
        if parent_id is not None:
            recompute_ancestors(store, parent_id)
        result = item.to_dict(has_children=False)

    logger.info(
        "Created WBS item %s (%s, %s)", result["id"], result["code"], level_label(level),
        extra={"project_id": project_id},
    )
    return result


def update_item(item_id: str, data: dict, *, store: WbsItemStore | None = None) -> dict:
    """
    Update an item's metadata, weight, or (for leaves) progress.

    status is re-derived from progress. A progress or weight change rolls up
    through every ancestor.

    Raises:
        ValidationError: bad input, or an attempt to set a derived/structural field.
        InvalidOperationError: progress given for a non-leaf item.
    """
    store = store or WbsItemStore()

    read_only = [field for field in _READ_ONLY_FIELDS if field in data]
    if read_only:
        raise ValidationError(
            "derived or structural fields cannot be updated directly",
            details={field: "read-only" for field in read_only},
        )

    changes = {}
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty", details={"name": "required"})
        changes["name"] = name
    for field in _TEXT_FIELDS:
        if field in data:
            changes[field] = data[field] or None
    changes.update(_parse_dates(data))
    if "weight" in data:
        changes["weight"] = _parse_weight(data["weight"])
    if "progress" in data:
        changes["progress"] = _parse_progress(data["progress"])

    with store.transaction():
        item = store.get(item_id)

        if "progress" in changes:
            if store.has_children(item.id):
                raise InvalidOperationError(
                    "progress of a non-leaf item is derived from its children",
                    reason="derived_progress",
                    item_id=item.id,
                )
            changes["status"] = derive_status(changes["progress"])

        start = changes.get("start_date", item.start_date)
        end = changes.get("end_date", item.end_date)
        if start and end and end < start:
            raise ValidationError("end_date must not be before start_date", details={"end_date": "before start_date"})

        rollup_needed = item.parent_id is not None and (
            changes.get("progress", item.progress) != item.progress
            or changes.get("weight", item.weight) != item.weight
        )
        store.update(item, **changes)
        if rollup_needed:
            recompute_ancestors(store, item.parent_id)
        result = item.to_dict(has_children=store.has_children(item.id))

    logger.debug("Updated WBS item %s: %s", item_id, sorted(changes))
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════

def get_item(item_id: str, *, store: WbsItemStore | None = None) -> dict:
    """Single item with its immediate children."""
    store = store or WbsItemStore()
    item = store.get(item_id)
    children = store.get_children(item.id)
    d = item.to_dict(has_children=bool(children))
    d["children"] = [c.to_dict(has_children=store.has_children(c.id)) for c in children]
    return d


def _build_tree(items) -> list[dict]:
    """Nest a level-ordered flat list and roll schedule dates up from children."""
    parent_ids = {i.parent_id for i in items if i.parent_id}
    nodes = {}
    roots = []
    for item in items:
        node = item.to_dict(has_children=item.id in parent_ids)
        node["children"] = []
        nodes[item.id] = node
    for item in items:
        parent = nodes.get(item.parent_id) if item.parent_id else None
        (parent["children"] if parent else roots).append(nodes[item.id])

    # Pre-order walk; reversed it visits every child before its parent.
    visit = []
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        visit.append(node)
        stack.extend(reversed(node["children"]))
    for node in reversed(visit):
        if not node["children"]:
            continue
        starts = [c["start_date"] for c in node["children"] if c["start_date"]]
        ends = [c["end_date"] for c in node["children"] if c["end_date"]]
        if starts:
            node["start_date"] = min(starts)
        if ends:
            node["end_date"] = max(ends)
    return roots


def list_items(
    project_id: int,
    *,
    flat: bool = False,
    parent_id: str | None = None,
    store: WbsItemStore | None = None,
) -> list[dict]:
    """
    List a project's WBS items.

    Args:
        project_id: Owning project.
        flat: Return a flat list (level, order) instead of a nested tree.
        parent_id: Only the immediate children of this item (always flat).
    """
    store = store or WbsItemStore()
    store.get_project(project_id)

    if parent_id:
        store.get(parent_id)
        return [
            c.to_dict(has_children=store.has_children(c.id))
            for c in store.get_children(parent_id, project_id=project_id)
        ]

    items = store.list_project(project_id)
    if flat:
        parent_ids = {i.parent_id for i in items if i.parent_id}
        return [i.to_dict(has_children=i.id in parent_ids) for i in items]
    return _build_tree(items)


def wbs_stats(project_id: int, *, today: date | None = None, store: WbsItemStore | None = None) -> dict:
    """
    Progress statistics over a project's LEVEL4 unit tasks.

    delayed counts unfinished tasks whose end_date is before ``today``.
    overall_progress is the weight-averaged progress of those tasks.
    """
    store = store or WbsItemStore()
    store.get_project(project_id)
    today = today or date.today()

    stats = {
        "project_id": project_id,
        "total": 0,
        "completed": 0,
        "in_progress": 0,
        "pending": 0,
        "delayed": 0,
        "overall_progress": 0.0,
    }
    total_weight = 0.0
    weighted_sum = 0.0
    for item in store.list_project(project_id):
        if item.level != MAX_LEVEL:
            continue
        weight = item.weight if item.weight is not None else 1.0
        stats["total"] += 1
        total_weight += weight
        weighted_sum += item.progress * weight

        if item.status == STATUS_COMPLETED:
            stats["completed"] += 1
            continue
        if item.status == STATUS_IN_PROGRESS:
            stats["in_progress"] += 1
        else:
            stats["pending"] += 1
        if item.end_date and item.end_date < today:
            stats["delayed"] += 1

    if total_weight > 0:
        stats["overall_progress"] = round(weighted_sum / total_weight, 1)
    return stats


def rebuild_project(project_id: int, *, store: WbsItemStore | None = None) -> dict:
    """
    Renumber every code and order in a project, then recompute all rollups.

    Useful after bulk imports or manual database edits.
    """
    store = store or WbsItemStore()
    started = time.perf_counter()
    with store.transaction():
        store.get_project(project_id)
        rewritten = renumber_children(store, project_id, None, force=True)
        recomputed = recompute_project(store, project_id)

    result = {"project_id": project_id, "codes_rewritten": rewritten, "items_recomputed": recomputed}
    _log_mutation("rebuild", None, project_id, started,
                  f"{rewritten} codes, {recomputed} rollups")
    return result


def check_integrity(project_id: int, *, store: WbsItemStore | None = None) -> list[str]:
    """
    Report every tree invariant violated in a project.

    Checks level nesting, dangling parents, LEVEL4 items with children,
    rollup and status consistency, code/position agreement and ancestor
    cycles. An empty list means the tree is consistent.
    """
    store = store or WbsItemStore()
    store.get_project(project_id)
    items = store.list_project(project_id)
    by_id = {i.id: i for i in items}
    children = {}
    for item in items:
        children.setdefault(item.parent_id, []).append(item)

    problems = []
    for item in items:
        label = f"{item.code} ({item.id})"
        if item.status != derive_status(item.progress):
            problems.append(f"{label}: status {item.status} does not match progress {item.progress}")

        if item.parent_id is None:
            if item.level != MIN_LEVEL:
                problems.append(f"{label}: root item is L{item.level}, expected L{MIN_LEVEL}")
        else:
            parent = by_id.get(item.parent_id)
            if parent is None:
                problems.append(f"{label}: parent {item.parent_id} does not exist")
            elif item.level != parent.level + 1:
                problems.append(f"{label}: L{item.level} under L{parent.level} parent {parent.code}")

        kids = children.get(item.id, [])
        if kids:
            if item.level >= MAX_LEVEL:
                problems.append(f"{label}: {level_label(MAX_LEVEL)} item has children")
            expected = weighted_progress(kids)
            if item.progress != expected:
                problems.append(f"{label}: progress {item.progress}, children roll up to {expected}")

    for parent_id, kids in children.items():
        if parent_id is not None and parent_id not in by_id:
            continue
        parent_code = by_id[parent_id].code if parent_id else None
        for position, kid in enumerate(kids, start=1):
            expected_code = child_code(parent_code, position)
            if kid.code != expected_code:
                problems.append(f"{kid.code} ({kid.id}): expected code {expected_code}")

    for item in items:
        seen = set()
        current = item
        while current is not None and current.parent_id is not None:
            if current.id in seen:
                problems.append(f"{item.code} ({item.id}): ancestor chain loops")
                break
            seen.add(current.id)
            current = by_id.get(current.parent_id)

    return problems
