"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates all tables for QuoteLedger:
users, agreements, audit_events, monthly_usage.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AGREEMENT_STATUSES = (
    "DRAFT", "SENT", "ACCEPTED", "DEPOSIT_SENT", "DEPOSIT_RECEIVED", "IN_PROGRESS", "COMPLETED", "CANCELLED",
)
AUDIT_ACTORS = ("CLIENT", "CONTRACTOR", "SYSTEM")
AUDIT_EVENT_TYPES = (
    "CREATED", "UPDATED", "SENT", "VIEWED", "ACCEPTED", "REJECTED", "EXPIRED", "DEPOSIT_SENT",
    "DEPOSIT_RECEIVED", "IN_PROGRESS", "COMPLETED", "CANCELLED", "CORRECTION", "STATUS_REVERTED",
)
USER_PLANS = ("FREE", "SOLO", "BUSINESS")


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("plan", sa.Enum(*USER_PLANS, name="userplan"), nullable=False),
        sa.Column("default_currency", sa.String(3), nullable=True),
        sa.Column("default_payment_instructions", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # --- agreements ---
    op.create_table(
        "agreements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("public_slug", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("client_name", sa.String(255), nullable=True),
        sa.Column("client_email", sa.String(255), nullable=True),
        sa.Column("work_included", sa.Text, nullable=False),
        sa.Column("work_excluded", sa.Text, nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_due", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_instructions", sa.Text, nullable=False),
        sa.Column("external_payment_link", sa.String(2048), nullable=True),
        sa.Column("cancellation_terms", sa.Text, nullable=False),
        sa.Column("governing_country", sa.String(100), nullable=False),
        sa.Column("status", sa.Enum(*AGREEMENT_STATUSES, name="agreementstatus"), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_agreements_user_id", "agreements", ["user_id"])
    op.create_index("ix_agreements_public_slug", "agreements", ["public_slug"], unique=True)
    op.create_index("ix_agreements_status", "agreements", ["status"])

    # --- audit_events (append-only) ---
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("agreement_id", sa.String(36), sa.ForeignKey("agreements.id"), nullable=False),
        sa.Column("actor", sa.Enum(*AUDIT_ACTORS, name="auditactor"), nullable=False),
        sa.Column("type", sa.Enum(*AUDIT_EVENT_TYPES, name="auditeventtype"), nullable=False),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_events_id", "audit_events", ["id"])
    op.create_index("ix_audit_events_type", "audit_events", ["type"])
    op.create_index("ix_audit_events_agreement_created", "audit_events", ["agreement_id", "created_at"])

    # --- monthly_usage ---
    op.create_table(
        "monthly_usage",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("year_month", sa.String(7), nullable=False),
        sa.Column("created_count", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "year_month", name="uq_monthly_usage_user_month"),
    )


def downgrade() -> None:
    op.drop_table("monthly_usage")
    op.drop_index("ix_audit_events_agreement_created", table_name="audit_events")
    op.drop_index("ix_audit_events_type", table_name="audit_events")
    op.drop_index("ix_audit_events_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_agreements_status", table_name="agreements")
    op.drop_index("ix_agreements_public_slug", table_name="agreements")
    op.drop_index("ix_agreements_user_id", table_name="agreements")
    op.drop_table("agreements")
    op.drop_table("users")
    for name in ("auditeventtype", "auditactor", "agreementstatus", "userplan"):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
