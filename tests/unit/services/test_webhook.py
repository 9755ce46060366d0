"""Unit tests for webhook ingestion: status codes, dedupe and timeout budget."""

import asyncio
import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from lifecycle.services.billing.reconciler import ReconcileResult
from lifecycle.services.billing.webhook import WebhookIngestor
from lifecycle.services.email.templates import EmailKind
from lifecycle.services.notifications import EmailNotification


def make_event(event_type: str = "customer.subscription.updated") -> dict:
    return {
        "id": "evt_123",
        "type": event_type,
        "data": {"object": {"id": "sub_test", "customer": "cus_test"}},
    }


class TestIngest:
    def setup_method(self):
        self.db = AsyncMock()
        self.reconciler = AsyncMock()
        self.events = AsyncMock()
        self.events.is_processed.return_value = False
        self.dispatcher = MagicMock()
        self.stripe = MagicMock()
        self.stripe.construct_webhook_event.return_value = make_event()
        self.ingestor = WebhookIngestor(
            reconciler=self.reconciler,
            events=self.events,
            dispatcher=self.dispatcher,
            stripe=self.stripe,
            timeout_seconds=1.0,
        )
        self.payload = json.dumps(make_event()).encode()

        self.settings_patch = patch("lifecycle.services.billing.webhook.settings")
        mock_settings = self.settings_patch.start()
        mock_settings.stripe_webhook_secret = "whsec_test"

    def teardown_method(self):
        self.settings_patch.stop()

    @pytest.mark.asyncio
    async def test_processed_event_commits_then_dispatches(self):
        notification = EmailNotification(kind=EmailKind.PAYMENT_FAILED, to="a@b.c")
        user_id = uuid.uuid4()
        self.reconciler.reconcile.return_value = ReconcileResult(
            outcome="processed", user_id=user_id, notifications=[notification]
        )

        response = await self.ingestor.ingest(self.db, self.payload, "t=1,v1=sig", "application/json")

        assert response.status_code == 200
        assert response.body["outcome"] == "processed"
        assert response.body["event_id"] == "evt_123"
        self.events.record.assert_awaited_once()
        assert self.events.record.call_args.kwargs["user_id"] == user_id
        self.db.commit.assert_awaited_once()
        self.dispatcher.dispatch_all.assert_called_once_with([notification])

    @pytest.mark.asyncio
    async def test_duplicate_event_is_acknowledged(self):
        self.events.is_processed.return_value = True

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 200
        assert response.body["duplicate"] is True
        self.reconciler.reconcile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unresolved_event_is_recorded_and_acknowledged(self):
        self.reconciler.reconcile.return_value = ReconcileResult(outcome="unresolved")

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 200
        assert self.events.record.call_args.kwargs["outcome"] == "unresolved"

    @pytest.mark.asyncio
    async def test_ignored_event_is_not_recorded(self):
        self.reconciler.reconcile.return_value = ReconcileResult(outcome="ignored")

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 200
        self.events.record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_signature_is_400(self):
        response = await self.ingestor.ingest(self.db, self.payload, None)
        assert response.status_code == 400
        self.stripe.construct_webhook_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_bad_signature_is_400(self):
        self.stripe.construct_webhook_event.side_effect = ValueError("Invalid webhook signature")

        response = await self.ingestor.ingest(self.db, self.payload, "forged")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_wrong_content_type_is_400(self):
        response = await self.ingestor.ingest(self.db, self.payload, "sig", "text/plain")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unconfigured_secret_is_503(self):
        with patch("lifecycle.services.billing.webhook.settings") as mock_settings:
            mock_settings.stripe_webhook_secret = ""
            response = await self.ingestor.ingest(self.db, self.payload, "sig")
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_handler_failure_is_500_and_rolls_back(self):
        self.reconciler.reconcile.side_effect = RuntimeError("boom")

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 500
        self.db.rollback.assert_awaited_once()
        self.dispatcher.dispatch_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_is_500(self):
        async def hang(*_args):
            await asyncio.sleep(5)

        self.reconciler.reconcile.side_effect = hang
        self.ingestor.timeout_seconds = 0.01

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 500
        assert response.body["error"] == "Webhook processing timeout"
        self.db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_is_acknowledged(self):
        self.reconciler.reconcile.return_value = ReconcileResult(outcome="processed")
        self.events.record.side_effect = IntegrityError("insert", {}, Exception("unique"))
        # The competing delivery has recorded the event by the time we re-check
        self.events.is_processed.side_effect = [False, True]

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 200
        assert response.body["duplicate"] is True
        self.db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unrelated_constraint_violation_is_retried(self):
        self.reconciler.reconcile.return_value = ReconcileResult(outcome="processed")
        self.events.record.side_effect = IntegrityError(
            "update user_profiles", {}, Exception("user_profiles_stripe_customer_id_key")
        )

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 500
        assert response.body["error"] == "Webhook processing failed"
        self.db.rollback.assert_awaited_once()
        self.dispatcher.dispatch_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_conflict_recheck_failure_is_retried(self):
        self.reconciler.reconcile.return_value = ReconcileResult(outcome="processed")
        self.events.record.side_effect = IntegrityError("insert", {}, Exception("unique"))
        self.events.is_processed.side_effect = [False, ConnectionError("db gone")]

        response = await self.ingestor.ingest(self.db, self.payload, "sig")

        assert response.status_code == 500
