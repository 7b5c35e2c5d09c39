"""The only code path allowed to change a loan's status (and operator gates).

``apply_transition`` performs exactly one read-check-write attempt. Callers that
want conflicts absorbed use ``request_transition``, which re-reads and retries
when the only writes since the caller's version were gate updates.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable
from uuid import UUID

from app.core.settings import settings
from app.models.loan import Loan
from app.models.loan_status_history import LoanStatusHistory
from app.schemas.loan import GateFlag, LoanStatus
from app.services import gate_evaluator, status_graph, transition_events
from app.services.audit import build_audit_log, log_audit_entry
from app.services.errors import (
    GateBlocked,
    IllegalTransition,
    InvalidGate,
    LoanNotFound,
    PipelineError,
    RetriesExhausted,
    VersionConflict,
)
from app.services.loan_store import LoanStore
from app.services.transition_events import TransitionEvent, TransitionPublisher

logger = logging.getLogger(__name__)

OPERATOR_GATES = frozenset({GateFlag.APPROVAL_GRANTED, GateFlag.CONDITIONS_CLEARED})

Sleep = Callable[[float], Awaitable[None]]


def _allowed_targets(from_status: str) -> list[str]:
    return [status.value for status in status_graph.next_statuses(from_status)]


def _transition_changes(
    loan: Loan,
    target: LoanStatus,
    now: datetime,
    funded_amount: Decimal | None,
) -> dict:
    changes: dict = {"status": target.value}
    if target is LoanStatus.FUNDED:
        changes["funded_at"] = now
        changes["funded_amount"] = funded_amount if funded_amount is not None else loan.loan_amount
    return changes


async def apply_transition(
    store: LoanStore,
    loan_id: UUID,
    to_status: LoanStatus | str,
    actor: str,
    expected_version: int,
    *,
    notes: str | None = None,
    funded_amount: Decimal | None = None,
    publisher: TransitionPublisher | None = None,
) -> Loan:
    loan = await store.get(loan_id)
    if loan is None:
        raise LoanNotFound.for_id(loan_id)
    if loan.version != expected_version:
        raise VersionConflict.stale(loan_id, expected_version, loan.version)

    from_status = loan.status
    if not status_graph.is_legal_edge(from_status, to_status):
        raise IllegalTransition.between(
            from_status,
            getattr(to_status, "value", str(to_status)),
            _allowed_targets(from_status),
        )
    target = LoanStatus(to_status)

    decision = gate_evaluator.evaluate(loan, target)
    if not decision.allowed:
        raise GateBlocked(
            "gate_blocked",
            decision.reason or "Transition is blocked",
            {
                "gate": decision.gate,
                "missing": list(decision.missing),
                "from_status": from_status,
                "to_status": target.value,
            },
        )

    if funded_amount is not None and target is not LoanStatus.FUNDED:
        raise PipelineError(
            "funded_amount_not_applicable",
            "A funded amount can only be recorded when funding the loan",
            {"to_status": target.value},
        )

    now = datetime.now(timezone.utc)
    new_version = expected_version + 1
    history = LoanStatusHistory(
        loan_id=loan.id,
        from_status=from_status,
        to_status=target.value,
        actor=actor,
        version=new_version,
        notes=notes,
        created_at=now,
    )
    audit = build_audit_log(
        actor=actor,
        action="loan.status_changed",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"status": from_status, "version": expected_version},
        new_value={"status": target.value, "version": new_version},
    )
    updated = await store.compare_and_swap(
        loan.id,
        expected_version,
        _transition_changes(loan, target, now, funded_amount),
        history=history,
        audit=audit,
    )
    if updated is None:
        raise VersionConflict.stale(loan_id, expected_version, None)

    log_audit_entry(audit)
    logger.info(
        "Loan %s moved %s -> %s",
        updated.loan_number,
        from_status,
        target.value,
        extra={
            "loan_id": str(updated.id),
            "from_status": from_status,
            "to_status": target.value,
            "version": updated.version,
        },
    )
    await transition_events.emit(
        TransitionEvent(
            loan_id=updated.id,
            loan_number=updated.loan_number,
            from_status=from_status,
            to_status=target.value,
            actor=actor,
            version=updated.version,
            occurred_at=now,
        ),
        publisher,
    )
    return updated


def _only_gate_writes_since(loan: Loan, expected_version: int) -> bool:
    """True when every write after ``expected_version`` left the status alone."""
    if loan.version < expected_version:
        return False
    return not any(entry.version > expected_version for entry in loan.status_history)


async def request_transition(
    store: LoanStore,
    loan_id: UUID,
    to_status: LoanStatus | str,
    actor: str,
    expected_version: int,
    *,
    notes: str | None = None,
    funded_amount: Decimal | None = None,
    publisher: TransitionPublisher | None = None,
    max_retries: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Loan:
    retries = settings.transition_max_retries if max_retries is None else max_retries
    backoff = settings.retry_backoff_seconds if backoff_seconds is None else backoff_seconds
    version = expected_version
    for attempt in range(retries + 1):
        try:
            return await apply_transition(
                store,
                loan_id,
                to_status,
                actor,
                version,
                notes=notes,
                funded_amount=funded_amount,
                publisher=publisher,
            )
        except VersionConflict as exc:
            current = await store.get(loan_id)
            if current is None:
                raise LoanNotFound.for_id(loan_id) from exc
            if not _only_gate_writes_since(current, expected_version):
                raise
            if attempt == retries:
                raise RetriesExhausted.after(loan_id, attempt + 1) from exc
            logger.info(
                "Retrying transition after concurrent gate update",
                extra={"loan_id": str(loan_id), "attempt": attempt + 1, "version": current.version},
            )
            version = current.version
            await sleep(backoff * (2**attempt))
    raise RetriesExhausted.after(loan_id, retries + 1)


async def set_operator_gate(
    store: LoanStore,
    loan_id: UUID,
    gate: GateFlag | str,
    value: bool,
    actor: str,
    expected_version: int,
) -> Loan:
    """Set or clear an operator-controlled gate (approval, conditions cleared).

    Payment gates are owned by the payment listener and rejected here.
    """
    try:
        flag = GateFlag(gate)
    except ValueError as exc:
        raise InvalidGate("invalid_gate", f"Unknown gate: {gate}", {"gate": str(gate)}) from exc
    if flag not in OPERATOR_GATES:
        raise InvalidGate(
            "invalid_gate",
            f"{flag.value} is set by payment confirmations only",
            {"gate": flag.value, "allowed": sorted(g.value for g in OPERATOR_GATES)},
        )

    loan = await store.get(loan_id)
    if loan is None:
        raise LoanNotFound.for_id(loan_id)
    if loan.version != expected_version:
        raise VersionConflict.stale(loan_id, expected_version, loan.version)
    current = bool(getattr(loan, flag.value))
    if current == value:
        return loan

    audit = build_audit_log(
        actor=actor,
        action="loan.gate_updated",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={flag.value: current, "version": expected_version},
        new_value={flag.value: value, "version": expected_version + 1},
    )
    updated = await store.compare_and_swap(loan.id, expected_version, {flag.value: value}, audit=audit)
    if updated is None:
        raise VersionConflict.stale(loan_id, expected_version, None)
    log_audit_entry(audit)
    logger.info(
        "Gate %s set to %s on %s",
        flag.value,
        value,
        updated.loan_number,
        extra={"loan_id": str(updated.id), "gate": flag.value, "version": updated.version},
    )
    return updated
