"""End-to-end deletion flows: create, confirm, sweep, cancel and expire."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from lifecycle.core.rate_limit import RateLimiter
from lifecycle.models.audit import AuditAction
from lifecycle.models.deletion_request import DeletionRequestCreate
from lifecycle.services.deletion.executor import BatchExecutor
from lifecycle.services.deletion.maintenance import DeletionMaintenance
from lifecycle.services.deletion.service import DeletionService, RequestContext
from lifecycle.services.notifications import NotificationDispatcher

from tests.helpers.fakes import FakeDeletionStore, FakeSessionFactory
from tests.helpers.mock_factories import make_account

T0 = datetime(2026, 4, 1, 10, 0, tzinfo=UTC)
CTX = RequestContext(ip_address="198.51.100.7", user_agent="workflow")


class DeletionWorkflow:
    def setup_method(self):
        self.account = make_account(email="jean@example.com", first_name="Jean")
        self.db = AsyncMock()
        self.store = FakeDeletionStore()
        self.sessions = FakeSessionFactory()
        self.accounts = AsyncMock()
        self.accounts.get.return_value = self.account
        self.accounts.execute_deletion_rpc.return_value = True
        self.subscriptions = AsyncMock()
        self.subscriptions.get_active_for_user.return_value = None
        self.subscriptions.get_latest_for_user.return_value = None
        self.audit = AsyncMock()
        self.identity = AsyncMock()
        self.identity.verify_password.return_value = True
        self.email_sender = AsyncMock()
        self.email_sender.send.return_value = True
        self.dispatcher = NotificationDispatcher(email_sender=self.email_sender, crm=AsyncMock())
        self.service = DeletionService(
            store=self.store,
            accounts=self.accounts,
            subscriptions=self.subscriptions,
            audit=self.audit,
            identity=self.identity,
            refunds=AsyncMock(),
            stripe=MagicMock(),
            dispatcher=self.dispatcher,
            cooldown_hours=48,
            expiry_days=7,
            refund_on_confirm=False,
        )
        self.executor = BatchExecutor(
            service=self.service,
            store=self.store,
            audit=self.audit,
            session_factory=self.sessions,
            dispatcher=self.dispatcher,
        )
        self.limiter = MagicMock(spec=RateLimiter)
        self.limiter.purge_expired = AsyncMock(return_value=0)
        self.maintenance = DeletionMaintenance(
            service=self.service,
            executor=self.executor,
            store=self.store,
            limiter=self.limiter,
            audit=self.audit,
            session_factory=self.sessions,
        )

    async def request_deletion(self, now: datetime = T0):
        return await self.service.create_request(
            self.db,
            self.account.user_id,
            self.account.email,
            DeletionRequestCreate(password="correct-horse"),
            CTX,
            now=now,
        )

    def sent_tags(self) -> list[str]:
        return [call.kwargs["tag"] for call in self.email_sender.send.await_args_list]


class TestHappyPath(DeletionWorkflow):
    @pytest.mark.asyncio
    async def test_create_confirm_execute(self):
        request = await self.request_deletion()
        scheduled = request.scheduled_deletion_at
        assert scheduled == T0 + timedelta(hours=48)

        confirmed = await self.service.confirm(
            self.db, request.confirmation_token, CTX, now=T0 + timedelta(hours=1)
        )
        assert confirmed.scheduled_deletion_at == scheduled

        # Still cooling down
        early = await self.executor.execute_pending(now=scheduled - timedelta(minutes=1))
        assert early.total == 0
        assert request.status == "confirmed"

        report = await self.executor.execute_pending(now=scheduled + timedelta(minutes=1))
        assert (report.executed, report.failed, report.total) == (1, 0, 1)
        assert request.status == "completed"
        assert request.confirmation_token is None
        self.accounts.execute_deletion_rpc.assert_awaited_once()

        rescan = await self.executor.execute_pending(now=scheduled + timedelta(hours=1))
        assert rescan.total == 0
        self.accounts.execute_deletion_rpc.assert_awaited_once()

        await self.dispatcher.drain()
        assert self.sent_tags() == ["deletion_confirmation", "account_deleted"]

    @pytest.mark.asyncio
    async def test_audit_trail_covers_every_step(self):
        request = await self.request_deletion()
        await self.service.confirm(self.db, request.confirmation_token, CTX, now=T0)
        await self.executor.execute_pending(now=T0 + timedelta(hours=49))

        actions = [call.args[1] for call in self.audit.log.await_args_list]
        assert actions == [
            AuditAction.DELETION_REQUESTED,
            AuditAction.DELETION_CONFIRMATION_SENT,
            AuditAction.DELETION_CONFIRMED,
            AuditAction.DELETION_EXECUTED,
        ]


class TestCancelledPath(DeletionWorkflow):
    @pytest.mark.asyncio
    async def test_cancelled_request_is_never_executed(self):
        request = await self.request_deletion()
        await self.service.confirm(self.db, request.confirmation_token, CTX, now=T0)
        await self.service.cancel(self.db, self.account.user_id, None, CTX, now=T0 + timedelta(hours=2))

        report = await self.executor.execute_pending(now=T0 + timedelta(days=3))

        assert report.total == 0
        assert request.status == "cancelled"
        self.accounts.execute_deletion_rpc.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_can_request_again_after_cancel(self):
        first = await self.request_deletion()
        await self.service.cancel(self.db, self.account.user_id, None, CTX, now=T0)

        second = await self.request_deletion(now=T0 + timedelta(hours=1))

        assert first.status == "cancelled"
        assert second.status == "pending"
        assert await self.service.get_live(self.db, self.account.user_id) is second


class TestMaintenance(DeletionWorkflow):
    @pytest.mark.asyncio
    async def test_unconfirmed_request_expires(self):
        request = await self.request_deletion()

        status = await self.maintenance.status(now=T0 + timedelta(days=8))
        assert status["expired_requests"] == 1

        result = await self.maintenance.full_maintenance(now=T0 + timedelta(days=8))

        assert result["cleanup"]["expired_requests_removed"] == 1
        assert result["deletions"]["total"] == 0
        assert request.id not in self.store.rows
        self.limiter.purge_expired.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_status_counts(self):
        request = await self.request_deletion()
        await self.service.confirm(self.db, request.confirmation_token, CTX, now=T0)

        before = await self.maintenance.status(now=T0 + timedelta(hours=1))
        after = await self.maintenance.status(now=T0 + timedelta(hours=49))

        assert before == {"active_requests": 1, "ready_for_deletion": 0, "expired_requests": 0}
        assert after["ready_for_deletion"] == 1
