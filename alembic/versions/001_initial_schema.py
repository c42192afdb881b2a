"""Initial schema — providers, users, generation requests, generation logs.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ── Providers ─────────────────────────────────────────────
    op.create_table(
        "providers",
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("api_base_url", sa.String(255), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_free_tier", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("unconstrained", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("quota_requests", sa.Integer, nullable=True),
        sa.Column("quota_credits", sa.Integer, nullable=True),
        sa.Column("cost_per_request", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("cost_unit", sa.String(20), nullable=False, server_default="credits"),
        sa.Column("last_checked", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("usage_count >= 0", name="ck_providers_usage_non_negative"),
    )

    # ── Users ─────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("full_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("preferred_provider", sa.String(50), nullable=False, server_default="auto"),
        sa.Column("prioritize_free", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # ── Generation requests (history) ────────────────────────
    op.create_table(
        "generation_requests",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("user_id", sa.String(32), nullable=False),
        sa.Column("prompt", sa.Text, nullable=False),
        sa.Column("parameters", sa.JSON, nullable=False),
        sa.Column("provider_used", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("asset_url", sa.Text, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("cost", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_generation_requests_user_id", "generation_requests", ["user_id"])
    op.create_index("ix_generation_requests_status", "generation_requests", ["status"])
    op.create_index(
        "ix_generation_requests_user_created", "generation_requests", ["user_id", "created_at"]
    )

    # ── Generation logs (append-only trail) ──────────────────
    op.create_table(
        "generation_logs",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "request_id",
            sa.String(32),
            sa.ForeignKey("generation_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step", sa.String(40), nullable=True),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_generation_logs_request_ts", "generation_logs", ["request_id", "timestamp"]
    )


def downgrade() -> None:
    op.drop_table("generation_logs")
    op.drop_table("generation_requests")
    op.drop_table("users")
    op.drop_table("providers")
