from lifecycle.domain.account_operations import account_ops
from lifecycle.domain.audit_operations import audit_ops
from lifecycle.domain.billing_event_operations import billing_event_ops
from lifecycle.domain.deletion_operations import deletion_ops
from lifecycle.domain.invoice_operations import invoice_ops
from lifecycle.domain.quota_operations import quota_ops
from lifecycle.domain.subscription_operations import subscription_ops

__all__ = [
    "account_ops",
    "audit_ops",
    "billing_event_ops",
    "deletion_ops",
    "invoice_ops",
    "quota_ops",
    "subscription_ops",
]
