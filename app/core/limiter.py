from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
    key_prefix=f"{settings.redis_key_prefix}:ratelimit",
)

WEBHOOK_LIMIT = f"{settings.rate_limit_per_minute * 5}/minute"

__all__ = ["limiter", "WEBHOOK_LIMIT"]
