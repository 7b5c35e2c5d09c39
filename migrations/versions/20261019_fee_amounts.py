"""record captured fee amounts

Revision ID: 20261019_fee_amounts
Revises: 20261018_loan_pipeline
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_fee_amounts"
down_revision = "20261018_loan_pipeline"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("loans", sa.Column("underwriting_fee_amount", sa.Numeric(18, 2), nullable=True))
    op.add_column("loans", sa.Column("closing_fee_amount", sa.Numeric(18, 2), nullable=True))
    op.create_check_constraint(
        "ck_loans_fee_amounts_nonneg",
        "loans",
        "(underwriting_fee_amount IS NULL OR underwriting_fee_amount >= 0) "
        "AND (closing_fee_amount IS NULL OR closing_fee_amount >= 0)",
    )


def downgrade() -> None:
    op.drop_constraint("ck_loans_fee_amounts_nonneg", "loans", type_="check")
    op.drop_column("loans", "closing_fee_amount")
    op.drop_column("loans", "underwriting_fee_amount")
