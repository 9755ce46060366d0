"""Rate limiting for account lifecycle endpoints.

Counters live in the ``rate_limit_counters`` table so every service instance
sees the same fixed window. Each check is a single atomic
INSERT ... ON CONFLICT DO UPDATE that increments and returns the count.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.config import settings
from lifecycle.core.exceptions import RateLimitExceeded
from lifecycle.models.rate_limit import RateLimitCounter

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    name: str  # Counter namespace, e.g. "deletion_request"
    requests: int  # Maximum requests allowed
    window_seconds: int  # Time window in seconds


DELETION_REQUEST_LIMIT = RateLimitConfig(
    name="deletion_request",
    requests=settings.deletion_request_rate_limit,
    window_seconds=3600,
)
DELETION_CONFIRM_LIMIT = RateLimitConfig(
    name="deletion_confirm",
    requests=settings.deletion_confirm_rate_limit,
    window_seconds=3600,
)
DELETION_CANCEL_LIMIT = RateLimitConfig(
    name="deletion_cancel",
    requests=settings.deletion_cancel_rate_limit,
    window_seconds=3600,
)
SUBSCRIPTION_CANCEL_LIMIT = RateLimitConfig(
    name="subscription_cancel",
    requests=settings.subscription_cancel_rate_limit,
    window_seconds=60,
)


def window_start_for(now: datetime, window_seconds: int) -> datetime:
    """Align a timestamp to the start of its fixed window."""
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - (epoch % window_seconds), tz=UTC)


class RateLimiter:
    """Fixed-window rate limiter backed by a counters table."""

    async def hit(
        self,
        db: AsyncSession,
        identity: str,
        config: RateLimitConfig,
        now: datetime | None = None,
    ) -> int:
        """Record one request and return the count for the current window."""
        now = now or datetime.now(UTC)
        window_start = window_start_for(now, config.window_seconds)
        key = f"{config.name}:{identity}"

        stmt = (
            insert(RateLimitCounter)
            .values(key=key, window_start=window_start, count=1)
            .on_conflict_do_update(
                index_elements=["key", "window_start"],
                set_={"count": RateLimitCounter.count + 1},
            )
            .returning(RateLimitCounter.count)
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    async def check_rate_limit(
        self,
        db: AsyncSession,
        identity: str,
        config: RateLimitConfig,
        now: datetime | None = None,
    ) -> None:
        """Check if request is within rate limits.

        Raises:
            RateLimitExceeded: 403 with Retry-After if limit exceeded
        """
        now = now or datetime.now(UTC)
        count = await self.hit(db, identity, config, now=now)
        if count > config.requests:
            window_end = window_start_for(now, config.window_seconds) + timedelta(
                seconds=config.window_seconds
            )
            retry_after = max(1, int((window_end - now).total_seconds()))
            logger.warning(
                f"Rate limit exceeded for {config.name} by {identity} "
                f"({count}/{config.requests})"
            )
            raise RateLimitExceeded(retry_after)

    async def purge_expired(self, db: AsyncSession, older_than: datetime) -> int:
        """Delete counters whose window started before the cutoff."""
        stmt = delete(RateLimitCounter).where(
            RateLimitCounter.window_start < older_than  # type: ignore[arg-type]
        )
        result = await db.execute(stmt)
        return result.rowcount or 0


# Singleton instance for application-wide use
rate_limiter = RateLimiter()
