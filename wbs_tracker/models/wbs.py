"""
WBS — Work Breakdown Structure item model.

WbsItem is a self-referential L1-L4 tree scoped by project:
  L1 = major phase, L2 = work package group, L3 = work package, L4 = unit task.

code, progress and status on non-leaf items are cached derived values.
They are rewritten by the tree engine in wbs_tracker.services; callers never
set them directly.
"""

import uuid
from datetime import datetime, timezone

from wbs_tracker.models import db


__all__ = [
    "WbsItem",
    "MIN_LEVEL",
    "MAX_LEVEL",
    "LEVEL_LABELS",
    "STATUS_PENDING",
    "STATUS_IN_PROGRESS",
    "STATUS_COMPLETED",
    "level_label",
]


# ── Constants ────────────────────────────────────────────────────────────────

MIN_LEVEL = 1
MAX_LEVEL = 4

LEVEL_LABELS = {
    1: "LEVEL1",
    2: "LEVEL2",
    3: "LEVEL3",
    4: "LEVEL4",
}

STATUS_PENDING = "PENDING"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def level_label(level):
    """Return the LEVELn label for an integer level, or None if out of range."""
    return LEVEL_LABELS.get(level)


# ═════════════════════════════════════════════════════════════════════════════
# WbsItem
# ═════════════════════════════════════════════════════════════════════════════


class WbsItem(db.Model):
    """
    One node of a project's work breakdown tree.

    No unique constraint on (project_id, code): sibling lists are renumbered
    in place inside a single transaction, and intermediate flushes may hold
    duplicate codes until the renumbering pass completes.
    """

    __tablename__ = "wbs_items"
    __table_args__ = (
        db.Index("idx_wbs_project_parent", "project_id", "parent_id"),
        db.Index("idx_wbs_project_level", "project_id", "level"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id = db.Column(
        db.String(36),
        db.ForeignKey("wbs_items.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL for LEVEL1 roots",
    )
    level = db.Column(
        db.Integer, nullable=False,
        comment="1=LEVEL1 .. 4=LEVEL4; parent.level + 1",
    )
    code = db.Column(
        db.String(50), nullable=False,
        comment="Dotted path code, e.g. 2.1.3. Derived from tree position.",
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    sort_order = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Zero-based position among siblings",
    )
    weight = db.Column(db.Float, nullable=False, default=1.0)
    progress = db.Column(
        db.Integer, nullable=False, default=0,
        comment="0-100. Caller-set on leaves, rolled up on non-leaves.",
    )
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_PENDING,
        comment="PENDING | IN_PROGRESS | COMPLETED (derived from progress)",
    )

    # Schedule & deliverable
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    deliverable_name = db.Column(db.String(200), nullable=True)
    deliverable_link = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    @property
    def level_label(self):
        return level_label(self.level)

    def to_dict(self, has_children=None):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "parent_id": self.parent_id,
            "level": self.level,
            "level_label": self.level_label,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "order": self.sort_order,
            "weight": self.weight,
            "progress": self.progress,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "deliverable_name": self.deliverable_name,
            "deliverable_link": self.deliverable_link,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if has_children is not None:
            d["has_children"] = has_children
        return d

    def __repr__(self):
        return f"<WbsItem {self.code} L{self.level}: {self.name}>"
