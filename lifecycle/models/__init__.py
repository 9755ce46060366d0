from lifecycle.models.account import Account, SubscriptionTier
from lifecycle.models.audit import AuditAction, AuditLog
from lifecycle.models.billing import BillingEvent
from lifecycle.models.deletion_request import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    DeletionCancel,
    DeletionConfirm,
    DeletionConfirmed,
    DeletionRequest,
    DeletionRequestCreate,
    DeletionRequestCreated,
    DeletionRequestRead,
    DeletionStatus,
    DeletionType,
)
from lifecycle.models.invoice import InvoiceRecord
from lifecycle.models.quota import QuotaRecord, QuotaStatus
from lifecycle.models.rate_limit import RateLimitCounter
from lifecycle.models.subscription import SubscriptionRecord, SubscriptionStatus

__all__ = [
    "Account",
    "SubscriptionTier",
    "AuditAction",
    "AuditLog",
    "BillingEvent",
    "DeletionRequest",
    "DeletionRequestCreate",
    "DeletionRequestCreated",
    "DeletionRequestRead",
    "DeletionConfirm",
    "DeletionConfirmed",
    "DeletionCancel",
    "DeletionStatus",
    "DeletionType",
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "InvoiceRecord",
    "QuotaRecord",
    "QuotaStatus",
    "RateLimitCounter",
    "SubscriptionRecord",
    "SubscriptionStatus",
]
