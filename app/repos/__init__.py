from .config_override import ConfigOverrideRepo
from .connection_health import ConnectionHealthRepo
from .credential import CredentialRepo
from .manual_test_allowance import ManualTestAllowanceRepo
from .notification import NotificationRecordRepo
from .pending_transfer import PendingTransferRepo
from .refresh_log import RefreshLogRepo

__all__ = [
    "ConfigOverrideRepo",
    "ConnectionHealthRepo",
    "CredentialRepo",
    "ManualTestAllowanceRepo",
    "NotificationRecordRepo",
    "PendingTransferRepo",
    "RefreshLogRepo",
]
