"""
WBS — Code Generator

Generates dotted hierarchical codes for WBS items:
  - Roots:      {seq}                  (e.g. 1, 2, 3)
  - Non-roots:  {parent_code}.{seq}    (e.g. 2.1, 2.1.3)

seq is the item's 1-based position among its siblings in the same project.

next_code() appends at the end of a sibling list. regenerate_subtree()
rewrites every code below a moved item, and renumber_children() closes the
gap a moved or deleted item leaves among its former siblings. Both walk the
tree with an explicit stack.

Sibling counts are not serialised against concurrent inserts; callers run
these inside WbsItemStore.transaction() after locking the target parent.
"""

import logging

from wbs_tracker.core.exceptions import StructuralIntegrityError
from wbs_tracker.models.wbs import MAX_LEVEL, MIN_LEVEL

logger = logging.getLogger(__name__)


def child_code(parent_code: str | None, position: int) -> str:
    """Code for the ``position``-th (1-based) child of ``parent_code``."""
    if not parent_code:
        return str(position)
    return f"{parent_code}.{position}"


def clamp_level(level: int) -> int:
    return max(MIN_LEVEL, min(MAX_LEVEL, level))


# ── Next code at the end of a sibling list ──────────────────────────────────

def next_code(store, project_id: int, parent_id: str | None) -> str:
    """
    Code a new or moved item receives when appended under ``parent_id``.

    Counts the existing siblings under ``parent_id`` within the project and
    appends count + 1 to the parent's code (or uses it alone for roots).

    Raises:
        NotFoundError: parent_id is given but does not exist.
    """
    count = store.count_siblings(project_id, parent_id)
    if parent_id is None:
        return child_code(None, count + 1)
    parent = store.get(parent_id)
    return child_code(parent.code, count + 1)


# ── Subtree regeneration ────────────────────────────────────────────────────

def regenerate_subtree(store, node_id: str, new_code: str, *, level_delta: int = 0) -> int:
    """
    Set ``node_id``'s code to ``new_code`` and rewrite every descendant's code
    from its new parent code and its sibling position.

    Relative sibling order is preserved; sibling orders are compacted to
    0..n-1 on the way. When ``level_delta`` is non-zero every descendant's
    level shifts by that amount, clamped to LEVEL1..LEVEL4. The node's own
    level is the caller's responsibility.

    Returns:
        Number of items rewritten, the node included.

    Raises:
        StructuralIntegrityError: a descendant is reached twice (cycle).
    """
    node = store.get(node_id)
    if node.code != new_code:
        store.update(node, code=new_code)

    rewritten = 1
    visited = {node.id}
    stack = [node]
    while stack:
        parent = stack.pop()
        children = store.get_children(parent.id)
        for position, child in enumerate(children, start=1):
            if child.id in visited:
                raise StructuralIntegrityError(
                    f"WbsItem {child.id} reached twice while regenerating {node_id}",
                    item_id=child.id,
                )
            visited.add(child.id)

            fields = {"code": child_code(parent.code, position), "sort_order": position - 1}
            if level_delta:
                fields["level"] = clamp_level(child.level + level_delta)
            store.update(child, **fields)
            rewritten += 1
        # Reversed so the first child is processed first.
        stack.extend(reversed(children))

    logger.debug("Regenerated %d codes under %s (%s)", rewritten, node_id, new_code)
    return rewritten


def renumber_children(store, project_id: int, parent_id: str | None, *, force: bool = False) -> int:
    """
    Re-assign codes for a whole sibling list by position, compacting orders.

    Children whose code and order are already correct are skipped unless
    ``force`` is set, in which case every subtree is regenerated.

    Returns:
        Number of items rewritten.

    Raises:
        StructuralIntegrityError: parent_id is given but the row is missing.
    """
    parent_code = None
    if parent_id is not None:
        parent = store.get_or_none(parent_id)
        if parent is None:
            raise StructuralIntegrityError(
                f"Cannot renumber children of missing WbsItem {parent_id}",
                item_id=parent_id,
            )
        parent_code = parent.code

    rewritten = 0
    for position, child in enumerate(store.get_children(parent_id, project_id=project_id), start=1):
        code = child_code(parent_code, position)
        if not force and child.code == code and child.sort_order == position - 1:
            continue
        if child.sort_order != position - 1:
            store.update(child, sort_order=position - 1)
        rewritten += regenerate_subtree(store, child.id, code)
    return rewritten
