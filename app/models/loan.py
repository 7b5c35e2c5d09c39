import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.schemas.loan import LoanStatus


LOAN_STATUSES = tuple(status.value for status in LoanStatus)


class Loan(Base):
    __tablename__ = "loans"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "status IN ({})".format(", ".join(f"'{value}'" for value in LOAN_STATUSES)),
            name="ck_loans_status",
        ),
        CheckConstraint("version >= 0", name="ck_loans_version_nonneg"),
        CheckConstraint("loan_amount IS NULL OR loan_amount >= 0", name="ck_loans_amount_nonneg"),
        CheckConstraint("funded_amount IS NULL OR funded_amount >= 0", name="ck_loans_funded_nonneg"),
        CheckConstraint(
            "(underwriting_fee_amount IS NULL OR underwriting_fee_amount >= 0) "
            "AND (closing_fee_amount IS NULL OR closing_fee_amount >= 0)",
            name="ck_loans_fee_amounts_nonneg",
        ),
        Index("ix_loans_status_funded_at", "status", "funded_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_number = Column(String(32), nullable=False, unique=True)
    status = Column(String(40), nullable=False, default=LoanStatus.NEW_REQUEST.value, index=True)
    version = Column(Integer, nullable=False, default=0)

    loan_amount = Column(Numeric(18, 2), nullable=True)
    property_type = Column(String(50), nullable=True)
    transaction_type = Column(String(50), nullable=True)
    property_address = Column(String(255), nullable=True)
    property_city = Column(String(100), nullable=True)
    property_state = Column(String(50), nullable=True)
    borrower_id = Column(String(100), nullable=True, index=True)
    borrower_name = Column(String(255), nullable=True)

    approval_granted = Column(Boolean, nullable=False, default=False)
    payment_captured = Column(Boolean, nullable=False, default=False)
    closing_fee_captured = Column(Boolean, nullable=False, default=False)
    conditions_cleared = Column(Boolean, nullable=False, default=False)
    underwriting_fee_payment_id = Column(String(255), nullable=True)
    closing_fee_payment_id = Column(String(255), nullable=True)
    underwriting_fee_amount = Column(Numeric(18, 2), nullable=True)
    closing_fee_amount = Column(Numeric(18, 2), nullable=True)

    funded_at = Column(DateTime(timezone=True), nullable=True)
    funded_amount = Column(Numeric(18, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    status_history = relationship(
        "LoanStatusHistory",
        back_populates="loan",
        order_by="LoanStatusHistory.version",
        lazy="raise",
    )
