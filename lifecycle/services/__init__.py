# Services package

from lifecycle.services.billing.reconciler import BillingReconciler
from lifecycle.services.billing.refunds import RefundCalculator, RefundOutcome
from lifecycle.services.billing.webhook import WebhookIngestor
from lifecycle.services.deletion.executor import BatchExecutor, BatchReport
from lifecycle.services.deletion.maintenance import DeletionMaintenance
from lifecycle.services.deletion.service import DeletionService
from lifecycle.services.notifications import NotificationDispatcher
from lifecycle.services.quota import QuotaWindowManager

__all__ = [
    # Billing
    "BillingReconciler",
    "RefundCalculator",
    "RefundOutcome",
    "WebhookIngestor",
    # Account deletion
    "DeletionService",
    "BatchExecutor",
    "BatchReport",
    "DeletionMaintenance",
    # Usage
    "QuotaWindowManager",
    # Side effects
    "NotificationDispatcher",
]
