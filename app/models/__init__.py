from .base import Base
from .config_override import ConfigOverride
from .connection_health import ConnectionHealth, ConsolidatedStatus, HealthStatus
from .credential import Credential
from .error_type import CloudStorageErrorType, ErrorSeverity
from .manual_test_allowance import ManualTestAllowance
from .notification import NotificationCondition, NotificationRecord
from .pending_transfer import PendingTransfer, TransferStatus
from .provider import StorageProvider
from .refresh_log import RefreshLog, RefreshOutcome

__all__ = [
    "Base",
    "CloudStorageErrorType",
    "ConfigOverride",
    "ConnectionHealth",
    "ConsolidatedStatus",
    "Credential",
    "ErrorSeverity",
    "HealthStatus",
    "ManualTestAllowance",
    "NotificationCondition",
    "NotificationRecord",
    "PendingTransfer",
    "RefreshLog",
    "RefreshOutcome",
    "StorageProvider",
    "TransferStatus",
]
