from functools import lru_cache

from redis.asyncio import Redis

from app.core.settings import settings


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


def redis_key(*parts: str) -> str:
    """Namespace a key/channel under the configured prefix, e.g. ``pipeline:loan-transitions``."""
    return ":".join([settings.redis_key_prefix, *[str(part) for part in parts if part]])
