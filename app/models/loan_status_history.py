import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class LoanStatusHistory(Base):
    """Append-only audit trail of status transitions, one row per loan version."""

    __tablename__ = "loan_status_history"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("loan_id", "version", name="uq_loan_status_history_loan_version"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    from_status = Column(String(40), nullable=False)
    to_status = Column(String(40), nullable=False)
    actor = Column(String(255), nullable=False)
    version = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="status_history")
