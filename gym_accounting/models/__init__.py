# Database models
from gym_accounting.models.database import (
    Profile,
    Payment,
    AccountingIntegration,
    AccountMapping,
    SyncedTransaction,
    OAuthState,
)
from gym_accounting.models.sync_log import SyncLog

__all__ = [
    "Profile",
    "Payment",
    "AccountingIntegration",
    "AccountMapping",
    "SyncedTransaction",
    "OAuthState",
    "SyncLog",
]
