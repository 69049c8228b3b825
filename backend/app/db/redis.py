"""Redis client for session lookup, rate limiting and gateway token caching"""
import redis
import logging
from typing import Optional
from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# Sessions are issued by the auth service; this backend only reads them
SESSION_KEY_PREFIX = "session:"

# Refresh gateway tokens a few minutes before the provider expires them
GATEWAY_TOKEN_SAFETY_MARGIN = 300  # seconds


def get_session(session_id: str) -> Optional[int]:
    """Get user_id for a session, None if missing or expired"""
    value = get_redis_client().get(f"{SESSION_KEY_PREFIX}{session_id}")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Malformed session value for session {session_id[:8]}...")
        return None


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter and return current count.
    Uses Lua script to atomically increment and set TTL only for new keys (fixed window rate limiting)."""
    key = f"ratelimit:{identifier}"

    # Lua script: increment counter, set TTL if key is new (count == 1), return count
    lua_script = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return count
    """

    count = get_redis_client().eval(lua_script, 1, key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    window = settings.RATE_LIMIT_STRICT_WINDOW if strict else settings.RATE_LIMIT_WINDOW
    max_requests = settings.RATE_LIMIT_STRICT_REQUESTS if strict else settings.RATE_LIMIT_REQUESTS

    current_count = increment_rate_limit(identifier, window)
    return current_count <= max_requests


def get_cached_gateway_token(gateway: str) -> Optional[str]:
    """Get a cached OAuth access token for a payment gateway"""
    return get_redis_client().get(f"gateway_token:{gateway}")


def set_cached_gateway_token(gateway: str, token: str, expires_in: int) -> None:
    """Cache a gateway OAuth access token until shortly before it expires"""
    ttl = expires_in - GATEWAY_TOKEN_SAFETY_MARGIN
    if ttl <= 0:
        return
    get_redis_client().setex(f"gateway_token:{gateway}", ttl, token)
