from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError

from app.api import deps
from app.core.limiter import WEBHOOK_LIMIT, limiter
from app.schemas.payments import PaymentEvent, PaymentWebhookAck
from app.services import payment_gates
from app.services.errors import PipelineError
from app.services.loan_store import LoanStore

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook", response_model=PaymentWebhookAck, summary="Payment processor webhook")
@limiter.limit(WEBHOOK_LIMIT)
async def payment_webhook(
    request: Request,
    signature: str | None = Header(default=None, alias="X-Payment-Signature"),
    store: LoanStore = Depends(deps.get_store),
) -> PaymentWebhookAck:
    payload = await request.body()
    try:
        payment_gates.verify_signature(payload, signature)
        try:
            event = PaymentEvent.model_validate_json(payload)
        except ValidationError as exc:
            raise PipelineError("invalid_payload", "Webhook payload could not be parsed", {}) from exc
        return await payment_gates.handle_payment_event(store, event)
    except PipelineError as exc:
        raise exc.to_http() from exc
