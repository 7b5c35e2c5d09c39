from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LoanStatus(str, Enum):
    """Pipeline stages in canonical order; declaration order is the progress index."""

    NEW_REQUEST = "new_request"
    QUOTE_REQUESTED = "quote_requested"
    SOFT_QUOTE_ISSUED = "soft_quote_issued"
    TERM_SHEET_ISSUED = "term_sheet_issued"
    TERM_SHEET_SIGNED = "term_sheet_signed"
    APPRAISAL_ORDERED = "appraisal_ordered"
    APPRAISAL_RECEIVED = "appraisal_received"
    CONDITIONALLY_APPROVED = "conditionally_approved"
    CONDITIONAL_ITEMS_NEEDED = "conditional_items_needed"
    CLEAR_TO_CLOSE = "clear_to_close"
    FUNDED = "funded"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_LABELS: dict[LoanStatus, str] = {
    LoanStatus.NEW_REQUEST: "New Request",
    LoanStatus.QUOTE_REQUESTED: "Quote Requested",
    LoanStatus.SOFT_QUOTE_ISSUED: "Soft Quote",
    LoanStatus.TERM_SHEET_ISSUED: "Term Sheet",
    LoanStatus.TERM_SHEET_SIGNED: "Term Sheet Signed",
    LoanStatus.APPRAISAL_ORDERED: "Appraisal Ordered",
    LoanStatus.APPRAISAL_RECEIVED: "Appraisal Received",
    LoanStatus.CONDITIONALLY_APPROVED: "Cond. Approved",
    LoanStatus.CONDITIONAL_ITEMS_NEEDED: "Items Needed",
    LoanStatus.CLEAR_TO_CLOSE: "Clear to Close",
    LoanStatus.FUNDED: "Funded",
}


class GateFlag(str, Enum):
    APPROVAL_GRANTED = "approval_granted"
    PAYMENT_CAPTURED = "payment_captured"
    CLOSING_FEE_CAPTURED = "closing_fee_captured"
    CONDITIONS_CLEARED = "conditions_cleared"


class FeeKind(str, Enum):
    UNDERWRITING_FEE = "underwriting_fee"
    CLOSING_FEE = "closing_fee"


class LoanGates(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approval_granted: bool = False
    payment_captured: bool = False
    closing_fee_captured: bool = False
    conditions_cleared: bool = False


class LoanStatusHistoryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: str
    to_status: str
    actor: str
    version: int
    notes: str | None = None
    created_at: datetime | None = None


class LoanDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    loan_number: str
    status: str
    status_label: str
    step: int
    progress_percent: int
    version: int
    loan_amount: Decimal | None = None
    property_type: str | None = None
    transaction_type: str | None = None
    property_address: str | None = None
    property_city: str | None = None
    property_state: str | None = None
    borrower_id: str | None = None
    borrower_name: str | None = None
    gates: LoanGates
    underwriting_fee_amount: Decimal | None = None
    closing_fee_amount: Decimal | None = None
    funded_at: datetime | None = None
    funded_amount: Decimal | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StatusOption(BaseModel):
    value: str
    label: str
    step: int


class StatusOptionsResponse(BaseModel):
    statuses: list[StatusOption]


class LoanDetailResponse(BaseModel):
    loan: LoanDTO
    status_history: list[LoanStatusHistoryDTO]
    next_statuses: list[StatusOption]
    status_options: list[StatusOption]


class LoanListResponse(BaseModel):
    loans: list[LoanDTO]
    total: int
    page: int
    page_size: int
    total_pages: int


class LoanFilter(BaseModel):
    status: LoanStatus | None = None
    search: str | None = Field(default=None, max_length=200)


class LoanTransitionRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: LoanStatus
    expected_version: int = Field(ge=0)
    notes: str | None = Field(default=None, max_length=2000)
    funded_amount: Decimal | None = Field(default=None, ge=0)


class LoanGateUpdateRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    gate: GateFlag
    value: bool
    expected_version: int = Field(ge=0)


class StatusBucket(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    status: str
    label: str
    count: int
    total_amount: Decimal


class PipelineStats(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    total_loans: int
    funded_loans: int
    funded_amount: Decimal
    monthly_volume: Decimal
    monthly_funded: Decimal
    stale_loans: int
    by_status: list[StatusBucket]
    computed_at: datetime


class MonthlyPoint(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    month: str
    value: Decimal
    count: int


class DailyPoint(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    day: str
    sales: Decimal


class MonthlyHistory(BaseModel):
    monthly: list[MonthlyPoint]
    daily: list[DailyPoint]
    timezone: str


class ClosingSummary(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    loan_id: UUID
    loan_number: str
    property_address: str | None = None
    property_city: str | None = None
    property_state: str | None = None
    loan_amount: Decimal | None = None
    funded_amount: Decimal | None = None
    funded_date: date | None = None
    borrower_id: str | None = None
    borrower_name: str | None = None


class RecentClosingsResponse(BaseModel):
    closings: list[ClosingSummary]
