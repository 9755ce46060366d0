"""Domain operations for InvoiceRecord model."""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.models.invoice import InvoiceRecord


class InvoiceOperations:
    """Operations for Stripe invoice mirrors."""

    async def get_by_stripe_id(
        self,
        db: AsyncSession,
        stripe_invoice_id: str,
    ) -> InvoiceRecord | None:
        statement = select(InvoiceRecord).where(InvoiceRecord.stripe_invoice_id == stripe_invoice_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def upsert(self, db: AsyncSession, values: dict[str, Any]) -> InvoiceRecord:
        """Create or update an invoice keyed by stripe_invoice_id."""
        stmt = insert(InvoiceRecord).values(**values)
        set_: dict[str, Any] = {
            column: stmt.excluded[column] for column in values if column != "stripe_invoice_id"
        }
        set_["updated_at"] = func.now()
        stmt = (
            stmt.on_conflict_do_update(index_elements=["stripe_invoice_id"], set_=set_)
            .returning(InvoiceRecord)
            .execution_options(populate_existing=True)
        )

        result = await db.execute(stmt)
        await db.flush()

        return result.scalar_one()


invoice_ops = InvoiceOperations()
