"""Payment Gate Listener: turns confirmed fee payments into gate flags.

Payment processors deliver at least once, so confirmation is idempotent: a flag
that is already set is left alone and the loan version does not move.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable
from uuid import UUID

from app.core.settings import settings
from app.schemas.loan import FeeKind, GateFlag
from app.schemas.payments import PaymentEvent, PaymentWebhookAck
from app.services.audit import build_audit_log, log_audit_entry
from app.services.errors import InvalidGate, LoanNotFound, RetriesExhausted, WebhookSignatureInvalid
from app.services.loan_store import LoanStore

logger = logging.getLogger(__name__)

PAYMENT_ACTOR = "payment-processor"
SUCCEEDED_EVENT = "payment_intent.succeeded"
SIGNATURE_SCHEME = "v1"

# Fee kind -> (gate flag it sets, payment id column, captured amount column)
FEE_GATES: dict[FeeKind, tuple[GateFlag, str, str]] = {
    FeeKind.UNDERWRITING_FEE: (GateFlag.PAYMENT_CAPTURED, "underwriting_fee_payment_id", "underwriting_fee_amount"),
    FeeKind.CLOSING_FEE: (GateFlag.CLOSING_FEE_CAPTURED, "closing_fee_payment_id", "closing_fee_amount"),
}

_FEE_ALIASES = {
    "underwriting_fee": FeeKind.UNDERWRITING_FEE,
    "underwritingfee": FeeKind.UNDERWRITING_FEE,
    "closing_fee": FeeKind.CLOSING_FEE,
    "closingfee": FeeKind.CLOSING_FEE,
}

Sleep = Callable[[float], Awaitable[None]]


def resolve_fee_kind(value: FeeKind | str | None) -> FeeKind | None:
    if isinstance(value, FeeKind):
        return value
    if not value:
        return None
    return _FEE_ALIASES.get(str(value).strip().lower())


async def on_payment_confirmed(
    store: LoanStore,
    loan_id: UUID,
    fee_kind: FeeKind | str,
    payment_reference: str | None = None,
    *,
    amount: Decimal | None = None,
    max_retries: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """Set the gate flag for ``fee_kind``. Returns True when the flag changed."""
    kind = resolve_fee_kind(fee_kind)
    if kind is None:
        raise InvalidGate("invalid_gate", f"Fee kind does not map to a gate: {fee_kind}", {"fee_kind": str(fee_kind)})
    flag, reference_column, amount_column = FEE_GATES[kind]
    retries = settings.payment_gate_max_retries if max_retries is None else max_retries
    backoff = settings.retry_backoff_seconds if backoff_seconds is None else backoff_seconds

    for attempt in range(retries + 1):
        loan = await store.get(loan_id)
        if loan is None:
            raise LoanNotFound.for_id(loan_id)
        if getattr(loan, flag.value):
            logger.info(
                "Duplicate %s confirmation ignored",
                kind.value,
                extra={"loan_id": str(loan_id), "fee_kind": kind.value, "version": loan.version},
            )
            return False

        changes: dict[str, Any] = {flag.value: True}
        if payment_reference:
            changes[reference_column] = payment_reference
        if amount is not None:
            changes[amount_column] = amount
        audit = build_audit_log(
            actor=PAYMENT_ACTOR,
            action="loan.gate_updated",
            resource_type="loan",
            resource_id=str(loan.id),
            old_value={flag.value: False, "version": loan.version},
            new_value={**changes, "version": loan.version + 1},
        )
        updated = await store.compare_and_swap(loan.id, loan.version, changes, audit=audit)
        if updated is not None:
            log_audit_entry(audit)
            logger.info(
                "%s captured for %s",
                kind.value,
                updated.loan_number,
                extra={"loan_id": str(loan_id), "gate": flag.value, "fee_kind": kind.value, "version": updated.version},
            )
            return True

        logger.info(
            "Payment gate write lost a race, retrying",
            extra={"loan_id": str(loan_id), "fee_kind": kind.value, "attempt": attempt + 1},
        )
        if attempt < retries:
            await sleep(backoff * (2**attempt))

    raise RetriesExhausted.after(loan_id, retries + 1)


def compute_signature(secret: str, timestamp: int | str, payload: bytes) -> str:
    message = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise WebhookSignatureInvalid.because("malformed timestamp") from exc
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureInvalid.because("malformed signature header")
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: str | None,
    *,
    secret: str | None = None,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> None:
    secret = settings.payment_webhook_secret if secret is None else secret
    tolerance = settings.payment_webhook_tolerance_seconds if tolerance_seconds is None else tolerance_seconds
    if not secret:
        raise WebhookSignatureInvalid.because("webhook secret not configured")
    if not header:
        raise WebhookSignatureInvalid.because("missing signature header")

    timestamp, signatures = parse_signature_header(header)
    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        raise WebhookSignatureInvalid.because("timestamp outside tolerance")
    expected = compute_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureInvalid.because("signature mismatch")


def _metadata_value(metadata: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = metadata.get(key)
        if value not in (None, ""):
            return value
    return None


async def handle_payment_event(store: LoanStore, event: PaymentEvent) -> PaymentWebhookAck:
    if event.type != SUCCEEDED_EVENT:
        logger.debug("Ignoring payment event type %s", event.type)
        return PaymentWebhookAck()

    metadata = event.data.object.metadata
    raw_loan_id = _metadata_value(metadata, "loanId", "loan_id")
    raw_fee_kind = _metadata_value(metadata, "feeKind", "fee_kind")
    kind = resolve_fee_kind(raw_fee_kind)
    if raw_loan_id is None or kind is None:
        logger.info("Payment %s is not tied to a loan gate (fee kind %s)", event.data.object.id, raw_fee_kind)
        return PaymentWebhookAck()

    try:
        loan_id = UUID(str(raw_loan_id))
    except ValueError:
        logger.warning("Payment %s references malformed loan id %s", event.data.object.id, raw_loan_id)
        return PaymentWebhookAck()

    try:
        changed = await on_payment_confirmed(
            store, loan_id, kind, event.data.object.id, amount=event.data.object.captured_amount
        )
    except LoanNotFound:
        logger.warning(
            "Payment %s references unknown loan",
            event.data.object.id,
            extra={"loan_id": str(loan_id), "fee_kind": kind.value},
        )
        return PaymentWebhookAck()
    return PaymentWebhookAck(handled=True, changed=changed)
