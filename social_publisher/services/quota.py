# social_publisher/services/quota.py
"""Admission control: per-account pending-post caps and per-credential request rates."""
import hashlib
import math
import os
import time
from dataclasses import dataclass
from typing import Dict, Optional

import structlog
from redis.asyncio import Redis
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.errors import QuotaExceeded, RateLimited
from social_publisher.models.post import QuotaCounter, utcnow

logger = structlog.get_logger(__name__)

DEFAULT_PENDING_POST_LIMIT = int(os.getenv("DEFAULT_PENDING_POST_LIMIT", "10"))
PLAN_PENDING_POST_LIMITS = os.getenv("PLAN_PENDING_POST_LIMITS", "free:10,pro:100,business:1000")
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "120"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))


def parse_plan_limits(raw: str) -> Dict[str, int]:
    limits = {}
    for item in raw.split(","):
        if ":" not in item:
            continue
        plan, _, value = item.partition(":")
        limits[plan.strip()] = int(value)
    return limits


_PLAN_LIMITS = parse_plan_limits(PLAN_PENDING_POST_LIMITS)


def plan_limit(plan: Optional[str]) -> int:
    return _PLAN_LIMITS.get(plan or "", DEFAULT_PENDING_POST_LIMIT)


class QuotaService:
    """
    Pending-post counter per account.

    reserve/release are single conditional UPDATEs executed inside the caller's
    transaction, so the check and the increment can't be split by a concurrent
    request and the counter moves together with the status change it accounts for.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def ensure_counter(self, account_id: str) -> None:
        """Create the counter row in its own transaction; a concurrent creator winning is fine."""
        res = await self.session.execute(select(QuotaCounter).where(QuotaCounter.account_id == account_id))
        if res.scalar_one_or_none() is not None:
            return
        self.session.add(QuotaCounter(account_id=account_id, pending_count=0))
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()

    async def reserve(self, account_id: str, limit: int) -> None:
        q = (
            update(QuotaCounter)
            .where(QuotaCounter.account_id == account_id, QuotaCounter.pending_count < limit)
            .values(pending_count=QuotaCounter.pending_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        if res.rowcount != 1:
            logger.info("quota_exceeded", account_id=account_id, limit=limit)
            raise QuotaExceeded(account_id, limit)

    async def release(self, account_id: str) -> None:
        q = (
            update(QuotaCounter)
            .where(QuotaCounter.account_id == account_id, QuotaCounter.pending_count > 0)
            .values(pending_count=QuotaCounter.pending_count - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        if res.rowcount != 1:
            logger.warning("quota_release_without_reservation", account_id=account_id)

    async def pending_count(self, account_id: str) -> int:
        res = await self.session.execute(
            select(QuotaCounter.pending_count).where(QuotaCounter.account_id == account_id)
        )
        return res.scalar_one_or_none() or 0


@dataclass
class RateLimitStatus:
    limit: int
    remaining: int
    reset_after: int


class RateLimiter:
    """
    Fixed-window request counter in redis, keyed by API credential.
    Never waits: over-limit callers get RateLimited with a retry hint right away.
    """

    def __init__(
        self,
        redis: Redis,
        limit: int = RATE_LIMIT_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        prefix: str = "rl",
    ):
        self.redis = redis
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    def _key(self, credential: str, window: int) -> str:
        digest = hashlib.sha256(credential.encode()).hexdigest()[:32]
        return f"{self.prefix}:{digest}:{window}"

    async def hit(self, credential: str, now: Optional[float] = None) -> RateLimitStatus:
        now = time.time() if now is None else now
        window = int(now // self.window_seconds)
        key = self._key(credential, window)

        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, self.window_seconds)

        reset_after = max(1, math.ceil((window + 1) * self.window_seconds - now))
        if count > self.limit:
            logger.info("rate_limited", window=window, count=count, limit=self.limit)
            raise RateLimited(self.limit, reset_after)
        return RateLimitStatus(limit=self.limit, remaining=self.limit - count, reset_after=reset_after)
