"""Unit tests for the deletion sweep: per-request isolation and reporting."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from lifecycle.core.exceptions import ExternalServiceError
from lifecycle.models.audit import AuditAction
from lifecycle.services.deletion.executor import BatchExecutor
from lifecycle.services.deletion.service import DeletionService
from lifecycle.services.email.templates import EmailKind

from tests.helpers.fakes import FakeDeletionStore, FakeSessionFactory
from tests.helpers.mock_factories import make_account, make_deletion_request

NOW = datetime(2026, 3, 1, 3, 0, tzinfo=UTC)


class BatchExecutorTestBase:
    def setup_method(self):
        self.store = FakeDeletionStore()
        self.accounts = AsyncMock()
        self.accounts.execute_deletion_rpc.return_value = True
        self.subscriptions = AsyncMock()
        self.subscriptions.get_latest_for_user.return_value = None
        self.audit = AsyncMock()
        self.sessions = FakeSessionFactory()
        self.dispatcher = MagicMock()
        self.service = DeletionService(
            store=self.store,
            accounts=self.accounts,
            subscriptions=self.subscriptions,
            audit=self.audit,
            identity=AsyncMock(),
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
            batch_size=100,
        )
        self.accounts_by_user = {}
        self.accounts.get.side_effect = lambda db, user_id: self.accounts_by_user.get(user_id)

    def add_due(self, minutes_ago: int, **overrides):
        request = make_deletion_request(
            status="confirmed",
            confirmed_at=NOW - timedelta(days=2),
            scheduled_deletion_at=NOW - timedelta(minutes=minutes_ago),
            **overrides,
        )
        self.store.rows[request.id] = request
        account = make_account(user_id=request.user_id, email=f"{request.user_id.hex[:8]}@example.com")
        self.accounts_by_user[request.user_id] = account
        return request

    def failure_audits(self) -> list:
        return [
            call for call in self.audit.log.await_args_list if call.args[1] == AuditAction.DELETION_FAILED
        ]


class TestExecutePending(BatchExecutorTestBase):
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(self):
        first = self.add_due(30)
        second = self.add_due(20)
        third = self.add_due(10)

        async def rpc(db, user_id, deletion_type):
            if user_id == second.user_id:
                raise ExternalServiceError("deletion_rpc", "statement timeout")
            return True

        self.accounts.execute_deletion_rpc.side_effect = rpc

        report = await self.executor.execute_pending(now=NOW)

        assert report.executed == 2
        assert report.failed == 1
        assert report.skipped == 0
        assert report.total == 3
        assert report.errors[0]["request_id"] == str(second.id)
        assert "statement timeout" in report.errors[0]["error"]
        assert first.status == "completed"
        assert second.status == "confirmed"
        assert third.status == "completed"

    @pytest.mark.asyncio
    async def test_failure_rolls_back_and_is_audited(self):
        request = self.add_due(5)
        self.accounts.execute_deletion_rpc.return_value = False

        report = await self.executor.execute_pending(now=NOW)

        assert report.failed == 1
        assert request.status == "confirmed"
        assert self.sessions.rollbacks == 1
        [audit_call] = self.failure_audits()
        assert audit_call.kwargs["user_id"] == request.user_id
        assert audit_call.kwargs["details"]["request_id"] == str(request.id)
        self.dispatcher.dispatch_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_processes_oldest_first(self):
        late = self.add_due(1)
        early = self.add_due(60)
        order = []

        async def rpc(db, user_id, deletion_type):
            order.append(user_id)
            return True

        self.accounts.execute_deletion_rpc.side_effect = rpc

        await self.executor.execute_pending(now=NOW)

        assert order == [early.user_id, late.user_id]

    @pytest.mark.asyncio
    async def test_each_request_commits_separately_then_notifies(self):
        self.add_due(10)
        self.add_due(5)

        await self.executor.execute_pending(now=NOW)

        assert self.sessions.commits == 2
        kinds = [n.kind for call in self.dispatcher.dispatch_all.call_args_list for n in call.args[0]]
        assert kinds == [EmailKind.ACCOUNT_DELETED, EmailKind.ACCOUNT_DELETED]

    @pytest.mark.asyncio
    async def test_ignores_pending_and_future_requests(self):
        pending = make_deletion_request(status="pending", scheduled_deletion_at=NOW - timedelta(hours=1))
        future = make_deletion_request(status="confirmed", scheduled_deletion_at=NOW + timedelta(hours=1))
        for request in (pending, future):
            self.store.rows[request.id] = request

        report = await self.executor.execute_pending(now=NOW)

        assert report.total == 0
        assert pending.status == "pending"
        assert future.status == "confirmed"
        self.accounts.execute_deletion_rpc.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_request_taken_elsewhere_is_skipped(self):
        taken = self.add_due(10)
        self.add_due(5)
        real_lock = self.store.lock_due

        async def lock_due(db, id, now):
            if id == taken.id:
                return None
            return await real_lock(db, id, now)

        self.store.lock_due = lock_due

        report = await self.executor.execute_pending(now=NOW)

        assert report.skipped == 1
        assert report.executed == 1
        assert report.total == 2

    @pytest.mark.asyncio
    async def test_backlog_larger_than_a_page_is_drained(self):
        for minutes in range(5):
            self.add_due(minutes + 1)
        self.executor.batch_size = 2

        report = await self.executor.execute_pending(now=NOW)

        assert report.total == 5
        assert report.executed == 5
        assert all(row.status == "completed" for row in self.store.rows.values())

    @pytest.mark.asyncio
    async def test_failed_request_is_not_retried_on_later_pages(self):
        failing = self.add_due(50)
        for minutes in range(4):
            self.add_due(minutes + 1)
        self.executor.batch_size = 2
        attempts = []

        async def rpc(db, user_id, deletion_type):
            attempts.append(user_id)
            if user_id == failing.user_id:
                raise ExternalServiceError("deletion_rpc", "timeout")
            return True

        self.accounts.execute_deletion_rpc.side_effect = rpc

        report = await self.executor.execute_pending(now=NOW)

        assert report.total == 5
        assert report.executed == 4
        assert report.failed == 1
        assert attempts.count(failing.user_id) == 1
        assert failing.status == "confirmed"


class TestExecuteForUser(BatchExecutorTestBase):
    @pytest.mark.asyncio
    async def test_ignores_cooldown(self):
        request = make_deletion_request(
            status="confirmed", scheduled_deletion_at=NOW + timedelta(hours=40)
        )
        self.store.rows[request.id] = request

        assert await self.executor.execute_for_user(request.user_id, now=NOW) is True
        assert request.status == "completed"

    @pytest.mark.asyncio
    async def test_nothing_confirmed(self):
        pending = make_deletion_request(status="pending")
        self.store.rows[pending.id] = pending

        assert await self.executor.execute_for_user(pending.user_id, now=NOW) is False
        assert pending.status == "pending"

    @pytest.mark.asyncio
    async def test_failure_propagates_after_audit(self):
        request = make_deletion_request(status="confirmed")
        self.store.rows[request.id] = request
        self.accounts.execute_deletion_rpc.return_value = False

        with pytest.raises(ExternalServiceError):
            await self.executor.execute_for_user(request.user_id, now=NOW)

        assert request.status == "confirmed"
        assert len(self.failure_audits()) == 1
