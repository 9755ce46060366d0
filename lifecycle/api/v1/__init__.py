from lifecycle.api.v1 import account_deletion, admin, billing, quota

__all__ = [
    "account_deletion",
    "quota",
    "billing",
    "admin",
]
