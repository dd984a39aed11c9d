"""create_wbs_tables

Creates the work breakdown structure tables:
  - projects    — scoping key for every WBS tree
  - wbs_items   — self-referential LEVEL1..LEVEL4 tree nodes

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5e1a7c9d2b40
Revises:
Create Date: 2026-10-18 09:12:44.218301
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1a7c9d2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Projects ──────────────────────────────────────────────────────────
    if "projects" not in existing:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── WBS Items ─────────────────────────────────────────────────────────
    if "wbs_items" not in existing:
        op.create_table(
            "wbs_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("parent_id", sa.String(length=36), nullable=True,
                      comment="NULL for LEVEL1 roots"),
            sa.Column("level", sa.Integer(), nullable=False,
                      comment="1=LEVEL1 .. 4=LEVEL4; parent.level + 1"),
            sa.Column("code", sa.String(length=50), nullable=False,
                      comment="Dotted path code, e.g. 2.1.3. Derived from tree position."),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0",
                      comment="Zero-based position among siblings"),
            sa.Column("weight", sa.Float(), nullable=False, server_default="1"),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0",
                      comment="0-100. Caller-set on leaves, rolled up on non-leaves."),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="PENDING",
                      comment="PENDING | IN_PROGRESS | COMPLETED (derived from progress)"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("deliverable_name", sa.String(length=200), nullable=True),
            sa.Column("deliverable_link", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["wbs_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_wbs_items_project_id", "wbs_items", ["project_id"])
        op.create_index("ix_wbs_items_parent_id", "wbs_items", ["parent_id"])
        op.create_index("idx_wbs_project_parent", "wbs_items", ["project_id", "parent_id"])
        op.create_index("idx_wbs_project_level", "wbs_items", ["project_id", "level"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    if "wbs_items" in existing:
        op.drop_index("idx_wbs_project_level", table_name="wbs_items")
        op.drop_index("idx_wbs_project_parent", table_name="wbs_items")
        op.drop_index("ix_wbs_items_parent_id", table_name="wbs_items")
        op.drop_index("ix_wbs_items_project_id", table_name="wbs_items")
        op.drop_table("wbs_items")
    if "projects" in existing:
        op.drop_table("projects")
