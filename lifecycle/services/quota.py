"""Rolling usage quota: generations per window anchored to first use.

The window arithmetic is kept in pure functions over a QuotaRecord so it
can be exercised without a database; QuotaWindowManager adds the locked
read, the version-guarded write and the notification decisions.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.config import settings
from lifecycle.config.plans import get_plan
from lifecycle.domain.quota_operations import QuotaOperations, quota_ops
from lifecycle.models.account import Account
from lifecycle.models.quota import QuotaRecord, QuotaStatus
from lifecycle.services.email.templates import EmailKind
from lifecycle.services.notifications import EmailNotification, Notification

logger = logging.getLogger(__name__)


def next_reset_boundary(anchor: datetime, now: datetime, window: timedelta) -> datetime:
    """First anchor + k*window (k >= 1) strictly after now."""
    boundary = anchor + window
    if boundary > now:
        return boundary
    # Skip whole missed cycles at once
    missed = (now - boundary) // window + 1
    return boundary + missed * window


def apply_reset(record: QuotaRecord, now: datetime, max_letters: int, window: timedelta) -> bool:
    """
    Bring a record up to date in place. Returns True if anything changed.

    A tier change only moves the ceiling. An elapsed window zeroes the
    counter and advances reset_date to the next boundary after now.
    """
    changed = False
    if record.max_letters != max_letters:
        record.max_letters = max_letters
        changed = True

    if record.first_generation_date is not None and (
        record.reset_date is None or now >= record.reset_date
    ):
        record.reset_date = next_reset_boundary(record.first_generation_date, now, window)
        record.letters_generated = 0
        changed = True

    return changed


def apply_increment(record: QuotaRecord, now: datetime, window: timedelta) -> bool:
    """Count one generation in place, or return False when the ceiling is reached."""
    if record.letters_generated >= record.max_letters:
        return False
    if record.letters_generated == 0 and record.first_generation_date is None:
        record.first_generation_date = now
        record.reset_date = now + window
    record.letters_generated += 1
    return True


def to_status(record: QuotaRecord, tier: str) -> QuotaStatus:
    remaining = max(0, record.max_letters - record.letters_generated)
    return QuotaStatus(
        letters_generated=record.letters_generated,
        max_letters=record.max_letters,
        remaining_letters=remaining,
        reset_date=record.reset_date,
        first_generation_date=record.first_generation_date,
        can_generate=record.letters_generated < record.max_letters,
        subscription_tier=tier,
    )


@dataclass
class ConsumeResult:
    allowed: bool
    status: QuotaStatus
    notifications: list[Notification] = field(default_factory=list)


class QuotaWindowManager:
    """Read-reset-then-increment over the user_quotas row."""

    def __init__(
        self,
        quotas: QuotaOperations = quota_ops,
        window_days: int | None = None,
        warning_threshold: int | None = None,
    ) -> None:
        self.quotas = quotas
        self.window = timedelta(
            days=window_days if window_days is not None else settings.quota_window_days
        )
        self.warning_threshold = (
            warning_threshold if warning_threshold is not None else settings.quota_warning_threshold
        )

    async def check_and_maybe_reset(
        self,
        db: AsyncSession,
        account: Account,
        now: datetime | None = None,
    ) -> QuotaRecord:
        """Load (or create) the row under lock and roll the window if due."""
        now = now or datetime.now(UTC)
        max_letters = get_plan(account.subscription_tier).max_letters

        record = await self.quotas.get_for_update(db, account.user_id)
        if record is None:
            return await self.quotas.create(db, account.user_id, max_letters)

        expected_version = record.version
        if apply_reset(record, now, max_letters, self.window):
            record = await self.quotas.save(db, record, expected_version)
            logger.debug(f"Quota for {account.user_id} refreshed (reset_date={record.reset_date})")
        return record

    async def get_status(
        self,
        db: AsyncSession,
        account: Account,
        now: datetime | None = None,
    ) -> QuotaStatus:
        record = await self.check_and_maybe_reset(db, account, now)
        return to_status(record, account.subscription_tier)

    async def increment(
        self,
        db: AsyncSession,
        account: Account,
        now: datetime | None = None,
    ) -> bool:
        """Count one generation. False when the window's ceiling is reached."""
        allowed, _ = await self._increment(db, account, now or datetime.now(UTC))
        return allowed

    async def consume(
        self,
        db: AsyncSession,
        account: Account,
        now: datetime | None = None,
    ) -> ConsumeResult:
        """Increment and report status plus any quota emails to send after commit."""
        allowed, record = await self._increment(db, account, now or datetime.now(UTC))
        status = to_status(record, account.subscription_tier)
        result = ConsumeResult(allowed=allowed, status=status)
        if allowed and account.email:
            kind = self._threshold_email(status)
            if kind is not None:
                result.notifications.append(
                    EmailNotification(
                        kind=kind,
                        to=account.email,
                        language=account.language,
                        context={
                            "name": account.display_name,
                            "remaining": status.remaining_letters,
                            "max_letters": status.max_letters,
                            "reset_date": status.reset_date.strftime("%d/%m/%Y")
                            if status.reset_date
                            else "",
                        },
                    )
                )
        return result

    async def _increment(
        self,
        db: AsyncSession,
        account: Account,
        now: datetime,
    ) -> tuple[bool, QuotaRecord]:
        record = await self.check_and_maybe_reset(db, account, now)
        expected_version = record.version
        if not apply_increment(record, now, self.window):
            logger.info(f"Quota exhausted for {account.user_id} ({record.letters_generated}/{record.max_letters})")
            return False, record
        record = await self.quotas.save(db, record, expected_version)
        return True, record

    def _threshold_email(self, status: QuotaStatus) -> EmailKind | None:
        if status.remaining_letters == 0:
            return EmailKind.QUOTA_LIMIT_REACHED
        if status.remaining_letters == self.warning_threshold:
            return EmailKind.QUOTA_WARNING
        return None


quota_manager = QuotaWindowManager()
