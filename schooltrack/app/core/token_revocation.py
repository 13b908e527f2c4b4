"""
Token Revocation System using Redis.

Implements token blacklisting to immediately invalidate JWT tokens
when users log out.
"""

import logging

from redis.exceptions import RedisError

from schooltrack.app.core.config import settings
from schooltrack.app.core.redis_client import get_redis

logger = logging.getLogger(__name__)

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"


async def revoke_token(token: str, user_id: int) -> bool:
    """
    Revoke a specific JWT token by adding it to the blacklist.

    Returns:
        True if successfully revoked, False otherwise
    """
    redis = await get_redis()
    try:
        # Tokens auto-expire anyway, so the blacklist entry only needs to
        # outlive the token itself
        ttl_seconds = settings.access_token_expire_minutes * 60
        await redis.set(f"{TOKEN_BLACKLIST_PREFIX}{token}", str(user_id), ex=ttl_seconds)
        return True
    except RedisError as e:
        logger.error("Error revoking token for user %s: %s", user_id, e)
        return False


async def is_token_revoked(token: str) -> bool:
    """Check if a token has been revoked."""
    redis = await get_redis()
    try:
        exists = await redis.exists(f"{TOKEN_BLACKLIST_PREFIX}{token}")
        return exists > 0
    except RedisError as e:
        # Fail open: if Redis is down, allow the request
        logger.warning("Error checking token revocation: %s", e)
        return False
