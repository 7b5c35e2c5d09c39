from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable
from uuid import UUID

from pydantic import BaseModel
from redis.exceptions import RedisError

from app.core.settings import settings
from app.utils.redis_client import get_redis_client, redis_key

logger = logging.getLogger(__name__)

EVENT_TYPE = "loan.status_changed"


class TransitionEvent(BaseModel):
    type: str = EVENT_TYPE
    loan_id: UUID
    loan_number: str
    from_status: str
    to_status: str
    actor: str
    version: int
    occurred_at: datetime


TransitionPublisher = Callable[[TransitionEvent], Awaitable[None]]


def transition_channel() -> str:
    return redis_key(settings.transition_event_channel)


async def publish_transition(event: TransitionEvent) -> None:
    redis = get_redis_client()
    await redis.publish(transition_channel(), event.model_dump_json())


async def emit(event: TransitionEvent, publisher: TransitionPublisher | None = None) -> bool:
    """Publish after the write has committed. A failed publish is logged, never raised."""
    try:
        await (publisher or publish_transition)(event)
    except (RedisError, OSError) as exc:
        logger.warning(
            "Transition event publish failed: %s",
            exc,
            extra={"loan_id": str(event.loan_id), "version": event.version},
        )
        return False
    return True
