from __future__ import annotations

import math
from uuid import UUID

from app.models.loan import Loan
from app.schemas.loan import (
    LoanDetailResponse,
    LoanDTO,
    LoanFilter,
    LoanGates,
    LoanListResponse,
    LoanStatus,
    LoanStatusHistoryDTO,
)
from app.services import status_graph
from app.services.errors import LoanNotFound
from app.services.loan_store import LoanStore, Page


def _status_label(status: str) -> str:
    try:
        return LoanStatus(status).label
    except ValueError:
        return status


def to_dto(loan: Loan) -> LoanDTO:
    return LoanDTO(
        id=loan.id,
        loan_number=loan.loan_number,
        status=loan.status,
        status_label=_status_label(loan.status),
        step=status_graph.progress_index(loan.status) + 1,
        progress_percent=status_graph.progress_percent(loan.status),
        version=loan.version,
        loan_amount=loan.loan_amount,
        property_type=loan.property_type,
        transaction_type=loan.transaction_type,
        property_address=loan.property_address,
        property_city=loan.property_city,
        property_state=loan.property_state,
        borrower_id=loan.borrower_id,
        borrower_name=loan.borrower_name,
        gates=LoanGates.model_validate(loan),
        underwriting_fee_amount=loan.underwriting_fee_amount,
        closing_fee_amount=loan.closing_fee_amount,
        funded_at=loan.funded_at,
        funded_amount=loan.funded_amount,
        created_at=loan.created_at,
        updated_at=loan.updated_at,
    )


def to_detail(loan: Loan) -> LoanDetailResponse:
    history = sorted(loan.status_history, key=lambda entry: entry.version)
    return LoanDetailResponse(
        loan=to_dto(loan),
        status_history=[LoanStatusHistoryDTO.model_validate(entry) for entry in history],
        next_statuses=[status_graph.to_option(status) for status in status_graph.next_statuses(loan.status)],
        status_options=status_graph.status_options(),
    )


async def get_loan(store: LoanStore, loan_id: UUID) -> Loan:
    loan = await store.get(loan_id)
    if loan is None:
        raise LoanNotFound.for_id(loan_id)
    return loan


async def list_loans(
    store: LoanStore,
    loan_filter: LoanFilter,
    page: int = 1,
    page_size: int = 25,
) -> LoanListResponse:
    page = max(page, 1)
    loans, total = await store.list_loans(loan_filter, Page(offset=(page - 1) * page_size, limit=page_size))
    return LoanListResponse(
        loans=[to_dto(loan) for loan in loans],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )
