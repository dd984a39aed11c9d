"""
WBS — Item Store Adapter

The only place the tree engine touches the database. Code generation,
progress rollup and the structural mutator all read and write WbsItem rows
through a WbsItemStore, which keeps them independent of query details and
gives every mutation a single transactional boundary.

Transaction ownership:
    WbsItemStore.transaction() is the commit point for every engine
    operation. It commits on normal exit, rolls back on any exception, and
    converts SQLAlchemyError into StoreError so raw driver errors never leave
    the service layer.

Usage:
    store = WbsItemStore()
    with store.transaction():
        item = store.get(item_id)
        store.update(item, progress=40)
"""

import logging
from contextlib import contextmanager

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from wbs_tracker.core.exceptions import NotFoundError, StoreError, StructuralIntegrityError
from wbs_tracker.models import db
from wbs_tracker.models.project import Project
from wbs_tracker.models.wbs import WbsItem

logger = logging.getLogger(__name__)

# Stable sibling ordering: explicit order first, creation time breaks ties.
_SIBLING_ORDER = (WbsItem.sort_order, WbsItem.created_at, WbsItem.id)


class WbsItemStore:
    """Persistence adapter for WbsItem rows, bound to a SQLAlchemy session."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # ── Transactions ─────────────────────────────────────────────────────

    @contextmanager
    def transaction(self):
        """Run the enclosed block as one atomic unit of work."""
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("WBS store transaction rolled back")
            raise StoreError(f"Database error: {exc.__class__.__name__}") from exc
        except Exception:
            self.session.rollback()
            raise

    def run_in_transaction(self, fn, *args, **kwargs):
        """Call ``fn(*args, **kwargs)`` inside :meth:`transaction` and return its result."""
        with self.transaction():
            return fn(*args, **kwargs)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_or_none(self, item_id):
        if not item_id:
            return None
        return self.session.get(WbsItem, item_id)

    def get(self, item_id):
        item = self.get_or_none(item_id)
        if item is None:
            raise NotFoundError(resource="WbsItem", resource_id=item_id)
        return item

    def lock(self, item_id):
        """Re-read an item with a row lock held until the transaction ends.

        Serialises concurrent inserts under the same parent on databases that
        support SELECT ... FOR UPDATE. SQLite ignores the clause.
        """
        stmt = select(WbsItem).where(WbsItem.id == item_id).with_for_update()
        item = self.session.execute(stmt).scalar_one_or_none()
        if item is None:
            raise NotFoundError(resource="WbsItem", resource_id=item_id)
        return item

    def get_project(self, project_id):
        project = self.session.get(Project, project_id) if project_id else None
        if project is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    def _siblings_stmt(self, project_id, parent_id):
        stmt = select(WbsItem)
        if project_id is not None:
            stmt = stmt.where(WbsItem.project_id == project_id)
        if parent_id is None:
            stmt = stmt.where(WbsItem.parent_id.is_(None))
        else:
            stmt = stmt.where(WbsItem.parent_id == parent_id)
        return stmt

    def get_children(self, parent_id, project_id=None):
        """Immediate children of ``parent_id`` in sibling order.

        ``parent_id=None`` lists the project's LEVEL1 roots and then requires
        ``project_id``.
        """
        if parent_id is None and project_id is None:
            raise ValueError("project_id is required to list root items")
        stmt = self._siblings_stmt(project_id, parent_id).order_by(*_SIBLING_ORDER)
        return list(self.session.execute(stmt).scalars().all())

    def has_children(self, item_id):
        stmt = select(func.count(WbsItem.id)).where(WbsItem.parent_id == item_id)
        return (self.session.execute(stmt).scalar() or 0) > 0

    def get_parent(self, item):
        """Return the item's parent, or None for a root.

        Raises StructuralIntegrityError when parent_id points at a missing row.
        """
        if item.parent_id is None:
            return None
        parent = self.get_or_none(item.parent_id)
        if parent is None:
            logger.error(
                "Dangling parent reference: item %s -> parent %s",
                item.id, item.parent_id,
                extra={"project_id": item.project_id},
            )
            raise StructuralIntegrityError(
                f"WbsItem {item.id} references missing parent {item.parent_id}",
                item_id=item.id,
            )
        return parent

    def count_siblings(self, project_id, parent_id):
        stmt = select(func.count(WbsItem.id)).where(WbsItem.project_id == project_id)
        if parent_id is None:
            stmt = stmt.where(WbsItem.parent_id.is_(None))
        else:
            stmt = stmt.where(WbsItem.parent_id == parent_id)
        return self.session.execute(stmt).scalar() or 0

    def next_order(self, project_id, parent_id):
        """Order value that appends after every existing sibling."""
        stmt = select(func.max(WbsItem.sort_order)).where(WbsItem.project_id == project_id)
        if parent_id is None:
            stmt = stmt.where(WbsItem.parent_id.is_(None))
        else:
            stmt = stmt.where(WbsItem.parent_id == parent_id)
        current_max = self.session.execute(stmt).scalar()
        return 0 if current_max is None else current_max + 1

    def previous_sibling(self, item):
        """Closest sibling at the same level with a strictly smaller order."""
        stmt = (
            self._siblings_stmt(item.project_id, item.parent_id)
            .where(
                WbsItem.level == item.level,
                WbsItem.sort_order < item.sort_order,
                WbsItem.id != item.id,
            )
            .order_by(WbsItem.sort_order.desc(), WbsItem.created_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def walk(self, item_id):
        """Yield ``(descendant, depth)`` pairs below ``item_id``, depth-first.

        Uses an explicit stack; a node reached twice means the parent links
        form a cycle.
        """
        seen = {item_id}
        stack = [(item_id, 0)]
        while stack:
            current, depth = stack.pop()
            children = self.get_children(current)
            for child in children:
                if child.id in seen:
                    raise StructuralIntegrityError(
                        f"Cycle detected below WbsItem {item_id} at {child.id}",
                        item_id=child.id,
                    )
                seen.add(child.id)
            for child in reversed(children):
                stack.append((child.id, depth + 1))
            for child in children:
                yield child, depth + 1

    def descendants(self, item_id):
        """Every item below ``item_id``."""
        return [node for node, _depth in self.walk(item_id)]

    def list_project(self, project_id):
        stmt = (
            select(WbsItem)
            .where(WbsItem.project_id == project_id)
            .order_by(WbsItem.level, *_SIBLING_ORDER)
        )
        return list(self.session.execute(stmt).scalars().all())

    # ── Writes ───────────────────────────────────────────────────────────

    def create(self, item):
        self.session.add(item)
        self.session.flush()
        return item

    def update(self, item, **fields):
        for name, value in fields.items():
            setattr(item, name, value)
        self.session.flush()
        return item

    def delete(self, item):
        """Delete ``item`` and its whole subtree. Returns the number of rows removed."""
        by_depth = {}
        for node, depth in list(self.walk(item.id)):
            by_depth.setdefault(depth, []).append(node)
        # Deepest first, flushed per depth, so no child row outlives its parent row.
        for depth in sorted(by_depth, reverse=True):
            for node in by_depth[depth]:
                self.session.delete(node)
            self.session.flush()
        self.session.delete(item)
        self.session.flush()
        return 1 + sum(len(nodes) for nodes in by_depth.values())
