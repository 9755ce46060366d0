"""Unit tests for InvoiceOperations.upsert statement shape."""

import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.dialects import postgresql

from lifecycle.domain.invoice_operations import InvoiceOperations

from tests.helpers.mock_factories import make_mock_invoice_record, mock_scalar_result


class TestUpsert:
    def setup_method(self):
        self.ops = InvoiceOperations()
        self.record = make_mock_invoice_record()
        self.db = AsyncMock()
        self.db.execute = AsyncMock(return_value=mock_scalar_result(self.record))
        self.values = {
            "user_id": uuid.uuid4(),
            "stripe_invoice_id": "in_test",
            "stripe_customer_id": "cus_test",
            "status": "open",
            "attempt_count": 1,
        }

    @pytest.mark.asyncio
    async def test_conflict_updates_values_and_timestamp(self):
        result = await self.ops.upsert(self.db, self.values)

        assert result is self.record
        statement = self.db.execute.call_args[0][0]
        sql = str(statement.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (stripe_invoice_id) DO UPDATE" in sql
        set_clause = sql.split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        assert "status = excluded.status" in set_clause
        assert "updated_at = now()" in set_clause
        assert "stripe_invoice_id" not in set_clause

    @pytest.mark.asyncio
    async def test_returned_row_overwrites_loaded_instance(self):
        await self.ops.upsert(self.db, self.values)

        statement = self.db.execute.call_args[0][0]
        assert statement.get_execution_options()["populate_existing"] is True
