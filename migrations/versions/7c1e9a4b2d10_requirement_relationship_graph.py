"""requirement_relationship_graph

Creates the requirement relationship graph tables:
  - projects               — scope boundary, row locked per closure mutation
  - requirements           — display data referenced by the graph
  - requirement_edges      — direct ancestor -> descendant links
  - requirements_closure   — shortest-path closure with depth-0 self rows

Tables created conditionally to support idempotent execution against
databases that already received them via db.create_all().

Revision ID: 7c1e9a4b2d10
Revises:
Create Date: 2026-10-18 09:12:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e9a4b2d10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    # ── Projects ──────────────────────────────────────────────────────────
    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    # ── Requirements ──────────────────────────────────────────────────────
    if "requirements" not in existing_tables:
        op.create_table(
            "requirements",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=500), nullable=False),
            sa.Column("external_id", sa.String(length=100), nullable=True,
                      comment="Customer-facing key, e.g. REQ-014"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_requirements_project_id", "requirements", ["project_id"])
        op.create_index("idx_req_project_external", "requirements", ["project_id", "external_id"])

    # ── Direct edges ──────────────────────────────────────────────────────
    if "requirement_edges" not in existing_tables:
        op.create_table(
            "requirement_edges",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("ancestor_id", sa.String(length=36), nullable=False,
                      comment="Parent requirement"),
            sa.Column("descendant_id", sa.String(length=36), nullable=False,
                      comment="Child requirement"),
            sa.Column("created_by", sa.String(length=36), nullable=True,
                      comment="Acting user id"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("ancestor_id != descendant_id", name="ck_redge_no_self_ref"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["ancestor_id"], ["requirements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["descendant_id"], ["requirements.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("ancestor_id", "descendant_id", name="uq_redge_pair"),
        )
        op.create_index("idx_redge_project", "requirement_edges", ["project_id"])
        op.create_index("ix_requirement_edges_ancestor_id", "requirement_edges", ["ancestor_id"])
        op.create_index("ix_requirement_edges_descendant_id", "requirement_edges", ["descendant_id"])

    # ── Closure ───────────────────────────────────────────────────────────
    if "requirements_closure" not in existing_tables:
        op.create_table(
            "requirements_closure",
            sa.Column("ancestor_id", sa.String(length=36), nullable=False),
            sa.Column("descendant_id", sa.String(length=36), nullable=False),
            sa.Column("depth", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("updated_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("depth >= 0", name="ck_rclosure_depth_non_negative"),
            sa.CheckConstraint(
                "(ancestor_id = descendant_id AND depth = 0) "
                "OR (ancestor_id != descendant_id AND depth > 0)",
                name="ck_rclosure_self_row_only_at_zero",
            ),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["ancestor_id"], ["requirements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["descendant_id"], ["requirements.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("ancestor_id", "descendant_id"),
        )
        op.create_index("idx_rclosure_project_depth", "requirements_closure", ["project_id", "depth"])
        op.create_index("idx_rclosure_descendant_depth", "requirements_closure", ["descendant_id", "depth"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "requirements_closure" in existing_tables:
        op.drop_index("idx_rclosure_descendant_depth", table_name="requirements_closure")
        op.drop_index("idx_rclosure_project_depth", table_name="requirements_closure")
        op.drop_table("requirements_closure")
    if "requirement_edges" in existing_tables:
        op.drop_index("ix_requirement_edges_descendant_id", table_name="requirement_edges")
        op.drop_index("ix_requirement_edges_ancestor_id", table_name="requirement_edges")
        op.drop_index("idx_redge_project", table_name="requirement_edges")
        op.drop_table("requirement_edges")
    if "requirements" in existing_tables:
        op.drop_index("idx_req_project_external", table_name="requirements")
        op.drop_index("ix_requirements_project_id", table_name="requirements")
        op.drop_table("requirements")
    if "projects" in existing_tables:
        op.drop_table("projects")
