"""Global rate limiter instance for SlowAPI."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from common.core.config import settings

# Redis-backed outside local development so limits hold across API pods
# - 10/second: burst guard
# - 300/minute: sustained rate
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["10/second", "300/minute"],
    storage_uri=settings.rate_limit_storage_uri,
)
