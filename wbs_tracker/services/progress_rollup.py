"""
WBS — Progress Rollup Propagator

Recomputes a non-leaf item's progress/status from its immediate children and
walks the recomputation up the ancestor chain:

  parent.progress = round_half_up( Σ child.progress × child.weight / Σ child.weight )
  progress == 100      → COMPLETED
  0 < progress < 100   → IN_PROGRESS
  progress == 0        → PENDING

Leaf progress is caller-owned and never touched here. A leaf met on the way
up is skipped; the walk continues to its parent.

Usage:
    from wbs_tracker.services.progress_rollup import recompute_ancestors

    with store.transaction():
        recompute_ancestors(store, parent_id)
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from wbs_tracker.core.exceptions import StructuralIntegrityError
from wbs_tracker.models.wbs import STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING

logger = logging.getLogger(__name__)

_ONE = Decimal(1)


def derive_status(progress: int) -> str:
    """Map a 0-100 progress value to its status."""
    if progress >= 100:
        return STATUS_COMPLETED
    if progress > 0:
        return STATUS_IN_PROGRESS
    return STATUS_PENDING


def round_half_up(value) -> int:
    """Round to the nearest integer, halves away from zero (74.5 → 75)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def _weight_of(item) -> Decimal:
    # Unset weight counts as 1.
    if item.weight is None:
        return _ONE
    return Decimal(str(item.weight))


def weighted_progress(children) -> int:
    """Weighted mean of the children's progress, rounded half-up.

    Returns 0 when the total weight is zero (or there are no children).
    """
    total_weight = Decimal(0)
    weighted_sum = Decimal(0)
    for child in children:
        weight = _weight_of(child)
        total_weight += weight
        weighted_sum += Decimal(child.progress or 0) * weight
    if total_weight <= 0:
        return 0
    return round_half_up(weighted_sum / total_weight)


def recompute_node(store, item) -> bool:
    """Recompute one item from its immediate children.

    Returns:
        True if the item is non-leaf and was recomputed, False for a leaf.
    """
    children = store.get_children(item.id)
    if not children:
        return False

    progress = weighted_progress(children)
    status = derive_status(progress)
    if item.progress != progress or item.status != status:
        logger.debug(
            "Rollup %s (%s): %s%% → %s%% %s",
            item.id, item.code, item.progress, progress, status,
        )
        store.update(item, progress=progress, status=status)
    return True


def recompute_ancestors(store, node_id) -> int:
    """Recompute ``node_id`` and every ancestor up to its root.

    Args:
        store: WbsItemStore bound to the current transaction.
        node_id: An already-persisted item whose children just changed.

    Returns:
        Number of non-leaf items recomputed.

    Raises:
        NotFoundError: node_id does not exist.
        StructuralIntegrityError: a parent reference is dangling or the
            chain loops back on itself.
    """
    current = store.get(node_id)
    visited = set()
    recomputed = 0

    while current is not None:
        if current.id in visited:
            logger.error(
                "Ancestor cycle at WbsItem %s while rolling up from %s",
                current.id, node_id,
                extra={"project_id": current.project_id},
            )
            raise StructuralIntegrityError(
                f"Ancestor chain of WbsItem {node_id} loops at {current.id}",
                item_id=current.id,
            )
        visited.add(current.id)

        if recompute_node(store, current):
            recomputed += 1
        current = store.get_parent(current)

    return recomputed


def recompute_project(store, project_id) -> int:
    """Recompute every non-leaf item of a project, deepest level first.

    Used after bulk loads or a rebuild, where many leaves changed at once and
    walking each ancestor chain separately would repeat work.
    """
    items = store.list_project(project_id)
    recomputed = 0
    for item in sorted(items, key=lambda i: -i.level):
        if recompute_node(store, item):
            recomputed += 1
    logger.info(
        "Recomputed %d non-leaf WBS items", recomputed,
        extra={"project_id": project_id},
    )
    return recomputed
