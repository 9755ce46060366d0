"""Domain operations for QuotaRecord model."""

import uuid as uuid_pkg

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.core.exceptions import ConflictError
from lifecycle.models.quota import QuotaRecord


class QuotaOperations:
    """Row access for quota counters. Window arithmetic lives in the quota service."""

    async def get_for_update(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
    ) -> QuotaRecord | None:
        """Read the counter row under a row lock for read-modify-write."""
        statement = select(QuotaRecord).where(QuotaRecord.user_id == user_id).with_for_update()
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def create(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        max_letters: int,
    ) -> QuotaRecord:
        """
        Create the counter row with no window started.

        Concurrent first reads race on the primary key; the loser's insert
        is a no-op and both then read the same row.
        """
        stmt = (
            insert(QuotaRecord)
            .values(user_id=user_id, letters_generated=0, max_letters=max_letters, version=1)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        await db.execute(stmt)
        await db.flush()
        record = await self.get_for_update(db, user_id)
        if record is None:
            raise ConflictError(f"Quota row for {user_id} vanished after insert")
        return record

    async def save(self, db: AsyncSession, record: QuotaRecord, expected_version: int) -> QuotaRecord:
        """
        Write the record back if nobody else has since.

        Conditional on the version read earlier; raises ConflictError when
        another writer got there first.
        """
        stmt = (
            update(QuotaRecord)
            .where(
                QuotaRecord.user_id == record.user_id,
                QuotaRecord.version == expected_version,
            )
            .values(
                letters_generated=record.letters_generated,
                max_letters=record.max_letters,
                reset_date=record.reset_date,
                first_generation_date=record.first_generation_date,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if not result.rowcount:
            raise ConflictError(f"Quota for {record.user_id} changed concurrently")
        record.version = expected_version + 1
        return record


quota_ops = QuotaOperations()
