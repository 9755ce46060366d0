"""Unit tests for SubscriptionOperations: upsert shape and cancellation mirror."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.dialects import postgresql

from lifecycle.domain.subscription_operations import SubscriptionOperations

from tests.helpers.mock_factories import make_mock_subscription_record, mock_scalar_result


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


class TestUpsert:
    def setup_method(self):
        self.ops = SubscriptionOperations()
        self.record = make_mock_subscription_record(stripe_subscription_id="sub_1")
        self.db = AsyncMock()
        self.db.execute = AsyncMock(return_value=mock_scalar_result(self.record))
        self.values = {
            "user_id": uuid.uuid4(),
            "stripe_customer_id": "cus_1",
            "stripe_subscription_id": "sub_1",
            "status": "active",
            "cancel_at_period_end": False,
            "metadata": {},
        }

    @pytest.mark.asyncio
    async def test_returns_stored_row(self):
        result = await self.ops.upsert(self.db, self.values)

        assert result is self.record
        self.db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_conflicts_on_gateway_id(self):
        await self.ops.upsert(self.db, self.values)

        sql = _sql(self.db.execute.call_args[0][0])
        assert "ON CONFLICT (stripe_subscription_id) DO UPDATE" in sql

    @pytest.mark.asyncio
    async def test_upsert_leaves_confirmation_marker_alone(self):
        await self.ops.upsert(self.db, self.values)

        sql = _sql(self.db.execute.call_args[0][0])
        set_clause = sql.split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        assert "status = excluded.status" in set_clause
        assert "confirmation_sent_at" not in set_clause
        assert "created_at" not in set_clause

    @pytest.mark.asyncio
    async def test_stamps_updated_at_on_conflict(self):
        await self.ops.upsert(self.db, self.values)

        sql = _sql(self.db.execute.call_args[0][0])
        set_clause = sql.split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        assert "updated_at = now()" in set_clause

    @pytest.mark.asyncio
    async def test_returned_row_overwrites_loaded_instance(self):
        await self.ops.upsert(self.db, self.values)

        statement = self.db.execute.call_args[0][0]
        assert statement.get_execution_options()["populate_existing"] is True


class TestMarkCanceled:
    @pytest.mark.asyncio
    async def test_sets_canceled_status(self):
        db = AsyncMock()
        await SubscriptionOperations().mark_canceled(db, "sub_1", datetime(2026, 1, 5, tzinfo=UTC))

        statement = db.execute.call_args[0][0]
        params = statement.compile(dialect=postgresql.dialect()).params
        assert params["status"] == "canceled"
        assert params["cancel_at_period_end"] is False


class TestMarkCancelAtPeriodEnd:
    @pytest.mark.asyncio
    async def test_sets_flag_only(self):
        db = AsyncMock()
        await SubscriptionOperations().mark_cancel_at_period_end(db, "sub_1")

        statement = db.execute.call_args[0][0]
        params = statement.compile(dialect=postgresql.dialect()).params
        assert params["cancel_at_period_end"] is True
        assert "status" not in params
