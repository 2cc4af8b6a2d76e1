"""Create accounts, issues and audit_events tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(table: str) -> bool:
    bind = op.get_bind()
    return sa.inspect(bind).has_table(table)


def upgrade() -> None:
    if not _has_table("accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role", sa.String(16), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True),
            sa.UniqueConstraint("email", name="uq_accounts_email"),
        )

    if not _has_table("issues"):
        op.create_table(
            "issues",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(200), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("location", sa.String(500), nullable=False),
            sa.Column("category", sa.String(32), nullable=False),
            sa.Column("priority", sa.String(16), nullable=False),
            sa.Column("status", sa.String(16), nullable=False),
            sa.Column("reporter_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("assignee_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("resolved_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
        )
        op.create_index("idx_issues_status", "issues", ["status"])
        op.create_index("idx_issues_priority", "issues", ["priority"])
        op.create_index("idx_issues_category", "issues", ["category"])
        op.create_index("idx_issues_reporter_id", "issues", ["reporter_id"])
        op.create_index("idx_issues_assignee_id", "issues", ["assignee_id"])

    if not _has_table("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_email", sa.String(255), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(45), nullable=True),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )


def downgrade() -> None:
    op.drop_table("audit_events")
    for index_name in (
        "idx_issues_assignee_id",
        "idx_issues_reporter_id",
        "idx_issues_category",
        "idx_issues_priority",
        "idx_issues_status",
    ):
        op.drop_index(index_name, table_name="issues")
    op.drop_table("issues")
    op.drop_table("accounts")
