"""create loan pipeline tables

Revision ID: 20261018_loan_pipeline
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_loan_pipeline"
down_revision = None
branch_labels = None
depends_on = None

LOAN_STATUSES = (
    "new_request",
    "quote_requested",
    "soft_quote_issued",
    "term_sheet_issued",
    "term_sheet_signed",
    "appraisal_ordered",
    "appraisal_received",
    "conditionally_approved",
    "conditional_items_needed",
    "clear_to_close",
    "funded",
)


def upgrade() -> None:
    op.create_table(
        "loans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("loan_number", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="new_request"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("loan_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("property_type", sa.String(length=50), nullable=True),
        sa.Column("transaction_type", sa.String(length=50), nullable=True),
        sa.Column("property_address", sa.String(length=255), nullable=True),
        sa.Column("property_city", sa.String(length=100), nullable=True),
        sa.Column("property_state", sa.String(length=50), nullable=True),
        sa.Column("borrower_id", sa.String(length=100), nullable=True),
        sa.Column("borrower_name", sa.String(length=255), nullable=True),
        sa.Column("approval_granted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_captured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("closing_fee_captured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("conditions_cleared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("underwriting_fee_payment_id", sa.String(length=255), nullable=True),
        sa.Column("closing_fee_payment_id", sa.String(length=255), nullable=True),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funded_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("loan_number", name="uq_loans_loan_number"),
        sa.CheckConstraint(
            "status IN ({})".format(", ".join(f"'{value}'" for value in LOAN_STATUSES)),
            name="ck_loans_status",
        ),
        sa.CheckConstraint("version >= 0", name="ck_loans_version_nonneg"),
        sa.CheckConstraint("loan_amount IS NULL OR loan_amount >= 0", name="ck_loans_amount_nonneg"),
        sa.CheckConstraint("funded_amount IS NULL OR funded_amount >= 0", name="ck_loans_funded_nonneg"),
    )
    op.create_index("ix_loans_status", "loans", ["status"], unique=False)
    op.create_index("ix_loans_borrower_id", "loans", ["borrower_id"], unique=False)
    op.create_index("ix_loans_status_funded_at", "loans", ["status", "funded_at"], unique=False)

    op.create_table(
        "loan_status_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("loan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("from_status", sa.String(length=40), nullable=False),
        sa.Column("to_status", sa.String(length=40), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("loan_id", "version", name="uq_loan_status_history_loan_version"),
    )
    op.create_index("ix_loan_status_history_loan_id", "loan_status_history", ["loan_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_audit_logs_resource_id", "audit_logs", ["resource_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_loan_status_history_loan_id", table_name="loan_status_history")
    op.drop_table("loan_status_history")
    op.drop_index("ix_loans_status_funded_at", table_name="loans")
    op.drop_index("ix_loans_borrower_id", table_name="loans")
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_table("loans")
