"""Unit tests for DeletionOperations: due scans and lock semantics."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from lifecycle.domain.deletion_operations import DeletionOperations

from tests.helpers.mock_factories import mock_scalar_result, mock_scalars_result

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=UTC)


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


class TestDueScan:
    def setup_method(self):
        self.ops = DeletionOperations()
        self.db = AsyncMock()

    @pytest.mark.asyncio
    async def test_lock_due_skips_locked_rows(self):
        self.db.execute = AsyncMock(return_value=mock_scalar_result(None))

        assert await self.ops.lock_due(self.db, uuid.uuid4(), NOW) is None

        sql = _sql(self.db.execute.call_args[0][0])
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert "scheduled_deletion_at <=" in sql

    @pytest.mark.asyncio
    async def test_list_due_ids_is_bounded_and_ordered(self):
        self.db.execute = AsyncMock(return_value=mock_scalars_result([]))

        await self.ops.list_due_ids(self.db, NOW, limit=25)

        statement = self.db.execute.call_args[0][0]
        sql = _sql(statement)
        assert "ORDER BY account_deletion_requests.scheduled_deletion_at" in sql
        assert "LIMIT" in sql
        params = statement.compile(dialect=postgresql.dialect()).params
        assert params["status_1"] == "confirmed"

    @pytest.mark.asyncio
    async def test_list_due_ids_excludes_already_attempted(self):
        self.db.execute = AsyncMock(return_value=mock_scalars_result([]))

        await self.ops.list_due_ids(self.db, NOW, limit=25, exclude={uuid.uuid4()})

        assert "NOT IN" in _sql(self.db.execute.call_args[0][0])

    @pytest.mark.asyncio
    async def test_list_due_ids_without_exclusions(self):
        self.db.execute = AsyncMock(return_value=mock_scalars_result([]))

        await self.ops.list_due_ids(self.db, NOW)

        assert "NOT IN" not in _sql(self.db.execute.call_args[0][0])


class TestExpiry:
    @pytest.mark.asyncio
    async def test_only_unconfirmed_pending_rows_are_removed(self):
        db = AsyncMock()
        result = MagicMock()
        result.rowcount = 2
        db.execute = AsyncMock(return_value=result)

        removed = await DeletionOperations().delete_expired_pending(db, NOW)

        assert removed == 2
        statement = db.execute.call_args[0][0]
        sql = _sql(statement)
        assert "confirmed_at IS NULL" in sql
        assert statement.compile(dialect=postgresql.dialect()).params["status_1"] == "pending"
