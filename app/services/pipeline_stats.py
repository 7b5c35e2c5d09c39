"""Read-only pipeline aggregates, recomputed from one store scan per call.

Amounts are summed as ``Decimal``. Month and day buckets are calendar periods in
the configured reporting timezone; naive timestamps are taken to be UTC.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from app.core.settings import settings
from app.models.loan import Loan
from app.schemas.loan import (
    ClosingSummary,
    DailyPoint,
    LoanStatus,
    MonthlyHistory,
    MonthlyPoint,
    PipelineStats,
    StatusBucket,
)
from app.services.errors import PipelineUnavailable
from app.services.loan_store import LoanStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def reporting_zone(name: str | None = None) -> tzinfo:
    return ZoneInfo(name or settings.reporting_timezone)


def _localize(value: datetime | None, zone: tzinfo) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone)


def _now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)


def funded_value(loan: Loan) -> Decimal:
    """What a funded loan contributes to funded totals."""
    if loan.funded_amount is not None:
        return _as_decimal(loan.funded_amount)
    return _as_decimal(loan.loan_amount)


def _is_funded(loan: Loan) -> bool:
    return loan.status == LoanStatus.FUNDED.value


async def _scan(store: LoanStore, operation: str) -> list[Loan]:
    try:
        return await store.scan()
    except PipelineUnavailable:
        raise
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Store scan failed during %s: %s", operation, exc)
        raise PipelineUnavailable.during(operation) from exc


def _month_key(value: datetime) -> tuple[int, int]:
    return value.year, value.month


def _months_ending(current: tuple[int, int], count: int) -> list[tuple[int, int]]:
    year, month = current
    keys = []
    for _ in range(count):
        keys.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def summarize(loans: list[Loan], now: datetime, zone: tzinfo) -> PipelineStats:
    local_now = _localize(now, zone)
    current_month = _month_key(local_now)
    stale_before = now - timedelta(days=settings.stale_loan_days)

    counts: Counter[str] = Counter()
    amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    funded_loans = 0
    funded_amount = ZERO
    monthly_volume = ZERO
    monthly_funded = ZERO
    stale_loans = 0

    for loan in loans:
        amount = _as_decimal(loan.loan_amount)
        counts[loan.status] += 1
        amounts[loan.status] += amount

        created = _localize(loan.created_at, zone)
        if created is not None and _month_key(created) == current_month:
            monthly_volume += amount

        if _is_funded(loan):
            funded_loans += 1
            value = funded_value(loan)
            funded_amount += value
            funded_at = _localize(loan.funded_at, zone)
            if funded_at is not None and _month_key(funded_at) == current_month:
                monthly_funded += value
        else:
            updated = _localize(loan.updated_at or loan.created_at, timezone.utc)
            if updated is not None and updated < stale_before:
                stale_loans += 1

    by_status = [
        StatusBucket(status=status.value, label=status.label, count=counts[status.value], total_amount=amounts[status.value])
        for status in LoanStatus
        if counts[status.value]
    ]
    return PipelineStats(
        total_loans=len(loans),
        funded_loans=funded_loans,
        funded_amount=funded_amount,
        monthly_volume=monthly_volume,
        monthly_funded=monthly_funded,
        stale_loans=stale_loans,
        by_status=by_status,
        computed_at=now,
    )


async def compute_stats(store: LoanStore, now: datetime | None = None) -> PipelineStats:
    loans = await _scan(store, "stats")
    return summarize(loans, _now(now), reporting_zone())


async def compute_monthly_history(
    store: LoanStore,
    months_back: int = 12,
    now: datetime | None = None,
) -> MonthlyHistory:
    """Funded amount per month (oldest first, current month last) and per day of the current month."""
    loans = await _scan(store, "monthly_history")
    zone = reporting_zone()
    local_now = _localize(_now(now), zone)
    month_keys = _months_ending(_month_key(local_now), max(months_back, 1))

    monthly_values: dict[tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
    monthly_counts: Counter[tuple[int, int]] = Counter()
    daily_values: dict[date, Decimal] = defaultdict(lambda: ZERO)

    for loan in loans:
        if not _is_funded(loan):
            continue
        funded_at = _localize(loan.funded_at, zone)
        if funded_at is None:
            continue
        key = _month_key(funded_at)
        value = funded_value(loan)
        monthly_values[key] += value
        monthly_counts[key] += 1
        if key == month_keys[-1]:
            daily_values[funded_at.date()] += value

    today = local_now.date()
    days = [today.replace(day=day) for day in range(1, today.day + 1)]
    return MonthlyHistory(
        monthly=[
            MonthlyPoint(month=f"{year:04d}-{month:02d}", value=monthly_values[(year, month)], count=monthly_counts[(year, month)])
            for year, month in month_keys
        ],
        daily=[DailyPoint(day=day.isoformat(), sales=daily_values[day]) for day in days],
        timezone=str(zone),
    )


def to_closing_summary(loan: Loan, zone: tzinfo | None = None) -> ClosingSummary:
    funded_at = _localize(loan.funded_at, zone or reporting_zone())
    return ClosingSummary(
        loan_id=loan.id,
        loan_number=loan.loan_number,
        property_address=loan.property_address,
        property_city=loan.property_city,
        property_state=loan.property_state,
        loan_amount=loan.loan_amount,
        funded_amount=funded_value(loan),
        funded_date=funded_at.date() if funded_at else None,
        borrower_id=loan.borrower_id,
        borrower_name=loan.borrower_name,
    )


async def compute_recent_closings(store: LoanStore, limit: int = 10) -> list[ClosingSummary]:
    if limit <= 0:
        return []
    try:
        loans = await store.list_funded(limit)
    except PipelineUnavailable:
        raise
    except (SQLAlchemyError, OSError) as exc:
        raise PipelineUnavailable.during("recent_closings") from exc
    zone = reporting_zone()
    return [to_closing_summary(loan, zone) for loan in loans]
