"""Loan Record Store: read-by-id, filtered listing, full scans and guarded writes.

Every mutation goes through ``compare_and_swap``, which only succeeds while the
stored ``version`` still equals the version the writer read.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.settings import settings
from app.models.audit_log import AuditLog
from app.models.loan import Loan
from app.models.loan_status_history import LoanStatusHistory
from app.schemas.loan import LoanFilter, LoanStatus
from app.services.errors import PipelineUnavailable

logger = logging.getLogger(__name__)

LOAN_NUMBER_ATTEMPTS = 3

# Columns a guarded write may touch. Identity, loan number and creation time are immutable.
MUTABLE_COLUMNS = frozenset(
    {
        "status",
        "approval_granted",
        "payment_captured",
        "closing_fee_captured",
        "conditions_cleared",
        "underwriting_fee_payment_id",
        "closing_fee_payment_id",
        "underwriting_fee_amount",
        "closing_fee_amount",
        "funded_at",
        "funded_amount",
    }
)

# IntegrityError is a DBAPIError too; writers catch it first.
_UNAVAILABLE_ERRORS = (DBAPIError, OSError)


@dataclass(frozen=True)
class Page:
    offset: int = 0
    limit: int = 25


def format_loan_number(year: int, sequence: int, prefix: str | None = None) -> str:
    return f"{prefix or settings.loan_number_prefix}-{year}-{sequence:04d}"


def next_loan_number(last_number: str | None, year: int, prefix: str | None = None) -> str:
    sequence = 1
    if last_number:
        try:
            sequence = int(last_number.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            sequence = 1
    return format_loan_number(year, sequence, prefix)


def check_mutable(changes: dict[str, Any]) -> None:
    illegal = set(changes) - MUTABLE_COLUMNS
    if illegal:
        raise ValueError(f"Columns cannot be changed through a guarded write: {sorted(illegal)}")


class LoanStore(ABC):
    @abstractmethod
    async def get(self, loan_id: UUID) -> Loan | None:
        """Return the loan with its status history loaded, or None."""

    @abstractmethod
    async def list_loans(self, loan_filter: LoanFilter, page: Page) -> tuple[list[Loan], int]:
        """Return one page of loans (newest first) and the total matching count."""

    @abstractmethod
    async def scan(self) -> list[Loan]:
        """Return every loan in one consistent read. History is not loaded."""

    @abstractmethod
    async def list_funded(self, limit: int) -> list[Loan]:
        """Funded loans, most recent funding first."""

    @abstractmethod
    async def insert(self, loan: Loan) -> Loan:
        """Persist a new loan in its initial state, assigning the loan number."""

    @abstractmethod
    async def compare_and_swap(
        self,
        loan_id: UUID,
        expected_version: int,
        changes: dict[str, Any],
        *,
        history: LoanStatusHistory | None = None,
        audit: AuditLog | None = None,
    ) -> Loan | None:
        """Apply ``changes`` and bump the version iff the stored version equals ``expected_version``.

        ``history`` and ``audit`` rows are written in the same transaction. Returns
        the updated loan, or None when another writer got there first.
        """


class SqlLoanStore(LoanStore):
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _load(self, loan_id: UUID) -> Loan | None:
        stmt = (
            select(Loan)
            .options(selectinload(Loan.status_history))
            .where(Loan.id == loan_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get(self, loan_id: UUID) -> Loan | None:
        try:
            return await self._load(loan_id)
        except _UNAVAILABLE_ERRORS as exc:
            raise PipelineUnavailable.during("get_loan") from exc

    def _filter_conditions(self, loan_filter: LoanFilter) -> list:
        conditions = []
        if loan_filter.status:
            conditions.append(Loan.status == LoanStatus(loan_filter.status).value)
        search = (loan_filter.search or "").strip()
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    Loan.loan_number.ilike(pattern),
                    Loan.property_address.ilike(pattern),
                    Loan.property_city.ilike(pattern),
                    Loan.borrower_name.ilike(pattern),
                )
            )
        return conditions

    async def list_loans(self, loan_filter: LoanFilter, page: Page) -> tuple[list[Loan], int]:
        conditions = self._filter_conditions(loan_filter)
        count_stmt = select(func.count()).select_from(Loan).where(*conditions)
        stmt = (
            select(Loan)
            .where(*conditions)
            .order_by(Loan.created_at.desc(), Loan.loan_number.desc())
            .offset(page.offset)
            .limit(page.limit)
        )
        try:
            total = int((await self.db.execute(count_stmt)).scalar_one() or 0)
            loans = (await self.db.execute(stmt)).scalars().all()
        except _UNAVAILABLE_ERRORS as exc:
            raise PipelineUnavailable.during("list_loans") from exc
        return list(loans), total

    async def scan(self) -> list[Loan]:
        try:
            result = await self.db.execute(select(Loan).order_by(Loan.created_at.asc()))
        except _UNAVAILABLE_ERRORS as exc:
            raise PipelineUnavailable.during("scan") from exc
        return list(result.scalars().all())

    async def list_funded(self, limit: int) -> list[Loan]:
        stmt = (
            select(Loan)
            .where(Loan.status == LoanStatus.FUNDED.value, Loan.funded_at.is_not(None))
            .order_by(Loan.funded_at.desc())
            .limit(limit)
        )
        try:
            result = await self.db.execute(stmt)
        except _UNAVAILABLE_ERRORS as exc:
            raise PipelineUnavailable.during("recent_closings") from exc
        return list(result.scalars().all())

    async def _last_loan_number(self, year: int) -> str | None:
        prefix = format_loan_number(year, 0).rsplit("-", 1)[0]
        stmt = (
            select(Loan.loan_number)
            .where(Loan.loan_number.like(f"{prefix}-%"))
            # Sequences outgrow four digits, so longer numbers sort first.
            .order_by(func.length(Loan.loan_number).desc(), Loan.loan_number.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def insert(self, loan: Loan) -> Loan:
        year = datetime.now(timezone.utc).year
        loan.status = LoanStatus.NEW_REQUEST.value
        loan.version = 0
        for attempt in range(1, LOAN_NUMBER_ATTEMPTS + 1):
            loan.loan_number = next_loan_number(await self._last_loan_number(year), year)
            self.db.add(loan)
            try:
                await self.db.commit()
            except IntegrityError:
                # Another intake took the same number; pick the next one.
                await self.db.rollback()
                logger.warning("Loan number collision on %s (attempt %s)", loan.loan_number, attempt)
                continue
            await self.db.refresh(loan)
            return loan
        raise PipelineUnavailable("loan_number_unavailable", "Could not allocate a loan number", {})

    async def compare_and_swap(
        self,
        loan_id: UUID,
        expected_version: int,
        changes: dict[str, Any],
        *,
        history: LoanStatusHistory | None = None,
        audit: AuditLog | None = None,
    ) -> Loan | None:
        check_mutable(changes)
        values = {
            **changes,
            "version": expected_version + 1,
            "updated_at": datetime.now(timezone.utc),
        }
        stmt = (
            update(Loan)
            .where(Loan.id == loan_id, Loan.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            if result.rowcount != 1:
                await self.db.rollback()
                return None
            if history is not None:
                self.db.add(history)
            if audit is not None:
                self.db.add(audit)
            await self.db.flush()
            # Read back inside the transaction so the result is exactly this write.
            updated = await self._load(loan_id)
            await self.db.commit()
        except IntegrityError:
            # The (loan_id, version) history key is taken: a concurrent writer won.
            await self.db.rollback()
            return None
        except _UNAVAILABLE_ERRORS as exc:
            await self.db.rollback()
            raise PipelineUnavailable.during("compare_and_swap") from exc
        return updated
