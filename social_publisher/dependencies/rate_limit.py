# social_publisher/dependencies/rate_limit.py
from fastapi import Depends, Response

from social_publisher.dependencies.auth import CurrentAccount, get_current_account
from social_publisher.infrastructure.redis_cache import get_redis
from social_publisher.services.quota import RateLimiter


def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_redis())


async def rate_limited_account(
    response: Response,
    account: CurrentAccount = Depends(get_current_account),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> CurrentAccount:
    """Authenticated caller, after counting this request against its credential's window."""
    status = await limiter.hit(account.credential)
    response.headers["X-RateLimit-Limit"] = str(status.limit)
    response.headers["X-RateLimit-Remaining"] = str(status.remaining)
    response.headers["X-RateLimit-Reset"] = str(status.reset_after)
    return account
