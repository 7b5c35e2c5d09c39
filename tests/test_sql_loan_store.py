from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from app.models.audit_log import AuditLog
from app.models.loan import Loan
from app.models.loan_status_history import LoanStatusHistory
from app.schemas.loan import LoanFilter, LoanStatus
from app.services.errors import PipelineUnavailable
from app.services.loan_store import Page, SqlLoanStore, format_loan_number, next_loan_number
from tests.conftest import FakeAsyncSession, FakeResult, InMemoryLoanStore, make_loan, sequence_handler


def _history(loan) -> LoanStatusHistory:
    return LoanStatusHistory(
        loan_id=loan.id, from_status="new_request", to_status="quote_requested", actor="ops", version=1
    )


@pytest.mark.asyncio
async def test_compare_and_swap_guards_on_version_and_writes_rows_together() -> None:
    loan = make_loan(status="quote_requested", version=1)
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(rowcount=1), FakeResult(scalar=loan)]))
    audit = AuditLog(actor="ops", action="loan.status_changed", resource_type="loan", resource_id=str(loan.id))
    history = _history(loan)

    result = await SqlLoanStore(db).compare_and_swap(
        loan.id, 0, {"status": "quote_requested"}, history=history, audit=audit
    )

    assert result is loan
    update_sql = str(db.statements[0])
    assert update_sql.startswith("UPDATE loans")
    assert "loans.version =" in update_sql.split("WHERE", 1)[1]
    assert db.added == [history, audit]
    assert db.commits == 1
    assert db.calls == ["execute", "flush", "execute", "commit"]


@pytest.mark.asyncio
async def test_compare_and_swap_returns_none_when_version_moved() -> None:
    loan = make_loan()
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(rowcount=0)]))

    result = await SqlLoanStore(db).compare_and_swap(loan.id, 0, {"status": "quote_requested"}, history=_history(loan))

    assert result is None
    assert db.added == []
    assert db.commits == 0
    assert db.rollbacks == 1


@pytest.mark.asyncio
async def test_compare_and_swap_treats_duplicate_history_version_as_lost_race() -> None:
    loan = make_loan()
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(rowcount=1)]))
    db.commit_error = IntegrityError("INSERT INTO loan_status_history", {}, Exception("duplicate key"))

    result = await SqlLoanStore(db).compare_and_swap(loan.id, 0, {"status": "quote_requested"}, history=_history(loan))

    assert result is None
    assert db.rollbacks == 1


@pytest.mark.asyncio
async def test_compare_and_swap_rejects_immutable_columns() -> None:
    loan = make_loan()

    with pytest.raises(ValueError):
        await SqlLoanStore(FakeAsyncSession()).compare_and_swap(loan.id, 0, {"loan_number": "RPC-2026-9999"})


@pytest.mark.asyncio
async def test_database_outage_maps_to_pipeline_unavailable() -> None:
    outage = OperationalError("SELECT", {}, Exception("connection refused"))
    db = FakeAsyncSession().on_execute(lambda _stmt: outage)
    store = SqlLoanStore(db)

    with pytest.raises(PipelineUnavailable):
        await store.scan()
    with pytest.raises(PipelineUnavailable):
        await store.compare_and_swap(make_loan().id, 0, {"status": "quote_requested"})


@pytest.mark.asyncio
async def test_list_loans_returns_page_and_total() -> None:
    loans = [make_loan(), make_loan()]
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(scalar=7), FakeResult(items=loans)]))

    page, total = await SqlLoanStore(db).list_loans(LoanFilter(status="new_request", search="tampa"), Page(0, 2))

    assert page == loans
    assert total == 7
    list_sql = str(db.statements[1]).lower()
    assert "loans.status = " in list_sql
    assert "lower(loans.borrower_name) like lower(" in list_sql


@pytest.mark.asyncio
async def test_insert_assigns_next_loan_number_and_retries_collisions() -> None:
    year = datetime.now(timezone.utc).year
    db = FakeAsyncSession().on_execute(
        sequence_handler([FakeResult(scalar=f"RPC-{year}-0001"), FakeResult(scalar=f"RPC-{year}-0002")])
    )
    db.commit_error = IntegrityError("INSERT INTO loans", {}, Exception("duplicate key"))

    loan = await SqlLoanStore(db).insert(Loan(property_city="Austin"))

    assert loan.loan_number == f"RPC-{year}-0003"
    assert loan.status == "new_request"
    assert loan.version == 0
    assert db.rollbacks == 1
    assert db.commits == 1


def test_loan_number_formatting() -> None:
    assert format_loan_number(2026, 7) == "RPC-2026-0007"
    assert next_loan_number(None, 2026) == "RPC-2026-0001"
    assert next_loan_number("RPC-2026-0041", 2026) == "RPC-2026-0042"
    assert next_loan_number("garbage", 2026) == "RPC-2026-0001"


@pytest.mark.asyncio
async def test_compare_and_swap_reads_back_before_committing() -> None:
    loan = make_loan()
    outage = OperationalError("SELECT", {}, Exception("connection reset"))
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(rowcount=1), outage]))

    with pytest.raises(PipelineUnavailable):
        await SqlLoanStore(db).compare_and_swap(loan.id, 0, {"status": "quote_requested"}, history=_history(loan))

    assert db.commits == 0
    assert db.rollbacks == 1
    assert "commit" not in db.calls


@pytest.mark.asyncio
async def test_driver_errors_on_reads_map_to_pipeline_unavailable() -> None:
    failure = DBAPIError("SELECT", {}, Exception("protocol violation"))
    db = FakeAsyncSession().on_execute(lambda _stmt: failure)
    store = SqlLoanStore(db)

    with pytest.raises(PipelineUnavailable):
        await store.get(make_loan().id)
    with pytest.raises(PipelineUnavailable):
        await store.list_loans(LoanFilter(), Page(0, 10))
    with pytest.raises(PipelineUnavailable):
        await store.list_funded(5)


@pytest.mark.asyncio
async def test_loan_numbers_continue_past_four_digits() -> None:
    year = datetime.now(timezone.utc).year
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(scalar=f"RPC-{year}-10000")]))

    loan = await SqlLoanStore(db).insert(Loan(property_city="Austin"))

    assert loan.loan_number == f"RPC-{year}-10001"
    last_number_sql = str(db.statements[0]).lower()
    assert "order by length(loans.loan_number) desc, loans.loan_number desc" in last_number_sql


@pytest.mark.asyncio
async def test_in_memory_store_allocates_after_rollover() -> None:
    year = datetime.now(timezone.utc).year
    store = InMemoryLoanStore(
        [make_loan(loan_number=f"RPC-{year}-{sequence:04d}") for sequence in (9998, 9999, 10000)]
    )

    loan = await store.insert(Loan(property_city="Austin"))

    assert loan.loan_number == f"RPC-{year}-10001"


def test_status_check_constraint_tracks_the_status_enum() -> None:
    [constraint] = [c for c in Loan.__table__.constraints if c.name == "ck_loans_status"]
    sql = str(constraint.sqltext)

    for status in LoanStatus:
        assert f"'{status.value}'" in sql
    assert Loan.__table__.c.status.default.arg == LoanStatus.NEW_REQUEST.value
