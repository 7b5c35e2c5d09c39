from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.api import deps
from app.schemas.loan import (
    LoanDetailResponse,
    LoanFilter,
    LoanGateUpdateRequest,
    LoanListResponse,
    LoanStatus,
    LoanTransitionRequest,
    MonthlyHistory,
    PipelineStats,
    RecentClosingsResponse,
    StatusOptionsResponse,
)
from app.services import loan_transitions, loans, pipeline_stats, status_graph
from app.services.errors import PipelineError
from app.services.loan_store import LoanStore

router = APIRouter(prefix="/operations", tags=["operations"])


@router.get(
    "/loan/{loan_id}",
    response_model=LoanDetailResponse,
    summary="Get a loan with its status history",
)
async def get_loan(
    loan_id: UUID,
    _: deps.Actor = Depends(deps.get_current_actor),
    store: LoanStore = Depends(deps.get_store),
) -> LoanDetailResponse:
    try:
        loan = await loans.get_loan(store, loan_id)
    except PipelineError as exc:
        raise exc.to_http() from exc
    return loans.to_detail(loan)


@router.get("/pipeline", response_model=LoanListResponse, summary="List loans in the pipeline")
async def list_pipeline(
    status_filter: LoanStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=200),
    _: deps.Actor = Depends(deps.get_current_actor),
    store: LoanStore = Depends(deps.get_store),
) -> LoanListResponse:
    try:
        return await loans.list_loans(store, LoanFilter(status=status_filter, search=search), page, page_size)
    except PipelineError as exc:
        raise exc.to_http() from exc


@router.post(
    "/loan/{loan_id}/status",
    response_model=LoanDetailResponse,
    summary="Move a loan to another pipeline status",
)
async def update_loan_status(
    loan_id: UUID,
    payload: LoanTransitionRequest,
    actor: deps.Actor = Depends(deps.get_current_actor),
    store: LoanStore = Depends(deps.get_store),
) -> LoanDetailResponse:
    try:
        loan = await loan_transitions.request_transition(
            store,
            loan_id,
            payload.status,
            actor.id,
            payload.expected_version,
            notes=payload.notes,
            funded_amount=payload.funded_amount,
        )
    except PipelineError as exc:
        raise exc.to_http() from exc
    return loans.to_detail(loan)


@router.put(
    "/loan/{loan_id}/gates",
    response_model=LoanDetailResponse,
    summary="Set an operator-controlled gate",
)
async def update_loan_gate(
    loan_id: UUID,
    payload: LoanGateUpdateRequest,
    actor: deps.Actor = Depends(deps.get_current_actor),
    store: LoanStore = Depends(deps.get_store),
) -> LoanDetailResponse:
    try:
        loan = await loan_transitions.set_operator_gate(
            store,
            loan_id,
            payload.gate,
            payload.value,
            actor.id,
            payload.expected_version,
        )
    except PipelineError as exc:
        raise exc.to_http() from exc
    return loans.to_detail(loan)


@router.get("/status-options", response_model=StatusOptionsResponse, summary="List pipeline statuses")
async def get_status_options(_: deps.Actor = Depends(deps.get_current_actor)) -> StatusOptionsResponse:
    return StatusOptionsResponse(statuses=status_graph.status_options())


@router.get("/stats", response_model=PipelineStats, summary="Pipeline totals by status")
async def get_pipeline_stats(
    _: deps.Actor = Depends(deps.get_current_actor),
    store: LoanStore = Depends(deps.get_store),
) -> PipelineStats:
    try:
        return await pipeline_stats.compute_stats(store)
    except PipelineError as exc:
        raise exc.to_http() from exc


@router.get("/monthly-history", response_model=MonthlyHistory, summary="Funded volume by month and day")
async def get_monthly_history(
    months_back: int = Query(default=12, ge=1, le=60),
    _: deps.Actor = Depends(deps.get_current_actor),
    store: LoanStore = Depends(deps.get_store),
) -> MonthlyHistory:
    try:
        return await pipeline_stats.compute_monthly_history(store, months_back)
    except PipelineError as exc:
        raise exc.to_http() from exc


@router.get("/recent-closings", response_model=RecentClosingsResponse, summary="Most recently funded loans")
async def get_recent_closings(
    limit: int = Query(default=10, ge=1, le=100),
    _: deps.Actor = Depends(deps.get_current_actor),
    store: LoanStore = Depends(deps.get_store),
) -> RecentClosingsResponse:
    try:
        closings = await pipeline_stats.compute_recent_closings(store, limit)
    except PipelineError as exc:
        raise exc.to_http() from exc
    return RecentClosingsResponse(closings=closings)
