from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.settings import settings
from app.services import pipeline_stats
from app.services.errors import PipelineUnavailable
from tests.conftest import InMemoryLoanStore, make_loan

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _funded(amount, funded_at, funded_amount=None, **overrides):
    return make_loan(
        status="funded",
        loan_amount=Decimal(amount),
        funded_amount=Decimal(funded_amount) if funded_amount is not None else None,
        funded_at=funded_at,
        created_at=funded_at - timedelta(days=30),
        updated_at=funded_at,
        **overrides,
    )


@pytest.fixture(autouse=True)
def _utc_reporting(monkeypatch):
    monkeypatch.setattr(settings, "reporting_timezone", "UTC")
    monkeypatch.setattr(settings, "stale_loan_days", 14)


@pytest.mark.asyncio
async def test_empty_store_yields_zeros() -> None:
    stats = await pipeline_stats.compute_stats(InMemoryLoanStore(), now=NOW)

    assert stats.total_loans == 0
    assert stats.funded_loans == 0
    assert stats.funded_amount == Decimal("0")
    assert stats.monthly_volume == Decimal("0")
    assert stats.by_status == []
    assert await pipeline_stats.compute_recent_closings(InMemoryLoanStore(), 5) == []


@pytest.mark.asyncio
async def test_by_status_buckets_add_up_to_totals() -> None:
    loans = [
        make_loan(status="new_request", loan_amount=Decimal("100000"), created_at=NOW, updated_at=NOW),
        make_loan(status="new_request", loan_amount=None, created_at=NOW, updated_at=NOW),
        make_loan(status="appraisal_ordered", loan_amount=Decimal("250000.50"), created_at=NOW, updated_at=NOW),
        _funded("400000", NOW - timedelta(days=2)),
    ]
    stats = await pipeline_stats.compute_stats(InMemoryLoanStore(loans), now=NOW)

    assert stats.total_loans == 4
    assert sum(bucket.count for bucket in stats.by_status) == stats.total_loans
    assert sum(bucket.total_amount for bucket in stats.by_status) == Decimal("750000.50")
    assert [bucket.status for bucket in stats.by_status] == ["new_request", "appraisal_ordered", "funded"]
    assert stats.by_status[0].count == 2
    assert stats.by_status[0].total_amount == Decimal("100000")
    assert stats.by_status[0].label == "New Request"


@pytest.mark.asyncio
async def test_funded_totals_prefer_funded_amount() -> None:
    loans = [
        _funded("500000", NOW - timedelta(days=1), funded_amount="480000"),
        _funded("300000", NOW - timedelta(days=40)),
    ]
    stats = await pipeline_stats.compute_stats(InMemoryLoanStore(loans), now=NOW)

    assert stats.funded_loans == 2
    assert stats.funded_amount == Decimal("780000")
    assert stats.monthly_funded == Decimal("480000")


@pytest.mark.asyncio
async def test_monthly_volume_counts_loans_created_this_month() -> None:
    loans = [
        make_loan(loan_amount=Decimal("100000"), created_at=datetime(2026, 3, 1, tzinfo=timezone.utc), updated_at=NOW),
        make_loan(loan_amount=Decimal("50000"), created_at=datetime(2026, 2, 28, tzinfo=timezone.utc), updated_at=NOW),
    ]
    stats = await pipeline_stats.compute_stats(InMemoryLoanStore(loans), now=NOW)

    assert stats.monthly_volume == Decimal("100000")


@pytest.mark.asyncio
async def test_stale_loans_exclude_funded() -> None:
    old = NOW - timedelta(days=30)
    loans = [
        make_loan(status="appraisal_received", created_at=old, updated_at=old),
        make_loan(status="quote_requested", created_at=old, updated_at=NOW - timedelta(days=1)),
        _funded("100000", old),
    ]
    stats = await pipeline_stats.compute_stats(InMemoryLoanStore(loans), now=NOW)

    assert stats.stale_loans == 1


@pytest.mark.asyncio
async def test_monthly_history_is_zero_filled_oldest_first() -> None:
    loans = [
        _funded("200000", datetime(2026, 3, 2, 15, tzinfo=timezone.utc)),
        _funded("100000", datetime(2026, 3, 2, 9, tzinfo=timezone.utc)),
        _funded("300000", datetime(2026, 1, 20, tzinfo=timezone.utc)),
        _funded("999999", datetime(2025, 6, 1, tzinfo=timezone.utc)),
        make_loan(status="clear_to_close"),
    ]
    history = await pipeline_stats.compute_monthly_history(InMemoryLoanStore(loans), months_back=3, now=NOW)

    assert [point.month for point in history.monthly] == ["2026-01", "2026-02", "2026-03"]
    assert [point.value for point in history.monthly] == [Decimal("300000"), Decimal("0"), Decimal("300000")]
    assert [point.count for point in history.monthly] == [1, 0, 2]
    assert len(history.daily) == 15
    assert history.daily[0].day == "2026-03-01"
    assert history.daily[1].sales == Decimal("300000")
    assert history.daily[-1].day == "2026-03-15"
    assert history.timezone == "UTC"


@pytest.mark.asyncio
async def test_monthly_history_crosses_year_boundary() -> None:
    now = datetime(2026, 1, 5, tzinfo=timezone.utc)
    history = await pipeline_stats.compute_monthly_history(InMemoryLoanStore(), months_back=2, now=now)

    assert [point.month for point in history.monthly] == ["2025-12", "2026-01"]
    assert [point.day for point in history.daily] == [f"2026-01-0{day}" for day in range(1, 6)]


@pytest.mark.asyncio
async def test_buckets_use_reporting_timezone(monkeypatch) -> None:
    monkeypatch.setattr(settings, "reporting_timezone", "America/New_York")
    # 03:00 UTC on March 1st is still February 28th in New York.
    loans = [_funded("120000", datetime(2026, 3, 1, 3, tzinfo=timezone.utc))]

    history = await pipeline_stats.compute_monthly_history(InMemoryLoanStore(loans), months_back=2, now=NOW)
    stats = await pipeline_stats.compute_stats(InMemoryLoanStore(loans), now=NOW)

    assert [point.value for point in history.monthly] == [Decimal("120000"), Decimal("0")]
    assert stats.monthly_funded == Decimal("0")
    assert history.timezone == "America/New_York"


@pytest.mark.asyncio
async def test_recent_closings_newest_first_and_limited() -> None:
    loans = [
        _funded("100000", datetime(2026, 3, 1, tzinfo=timezone.utc), borrower_name="Oldest"),
        _funded("200000", datetime(2026, 3, 10, tzinfo=timezone.utc), funded_amount="190000", borrower_name="Newest"),
        _funded("300000", datetime(2026, 3, 5, tzinfo=timezone.utc), borrower_name="Middle"),
        make_loan(status="clear_to_close"),
    ]
    closings = await pipeline_stats.compute_recent_closings(InMemoryLoanStore(loans), limit=2)

    assert [closing.borrower_name for closing in closings] == ["Newest", "Middle"]
    assert closings[0].funded_amount == Decimal("190000")
    assert closings[0].funded_date == date(2026, 3, 10)
    assert closings[1].funded_amount == Decimal("300000")


@pytest.mark.asyncio
async def test_store_failure_raises_unavailable_instead_of_partial_numbers() -> None:
    store = InMemoryLoanStore([make_loan()])
    store.broken = True

    with pytest.raises(PipelineUnavailable):
        await pipeline_stats.compute_stats(store, now=NOW)
    with pytest.raises(PipelineUnavailable):
        await pipeline_stats.compute_monthly_history(store, months_back=12, now=NOW)
    with pytest.raises(PipelineUnavailable):
        await pipeline_stats.compute_recent_closings(store, limit=10)
