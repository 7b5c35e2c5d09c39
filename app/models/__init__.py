from app.models.audit_log import AuditLog
from app.models.loan import Loan
from app.models.loan_status_history import LoanStatusHistory

__all__ = [
    "AuditLog",
    "Loan",
    "LoanStatusHistory",
]
