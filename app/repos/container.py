from dependency_injector import containers, providers

from app.repos.config_override import ConfigOverrideRepo
from app.repos.connection_health import ConnectionHealthRepo
from app.repos.credential import CredentialRepo
from app.repos.manual_test_allowance import ManualTestAllowanceRepo
from app.repos.notification import NotificationRecordRepo
from app.repos.pending_transfer import PendingTransferRepo
from app.repos.refresh_log import RefreshLogRepo


class RepoContainer(containers.DeclarativeContainer):
    config_override = providers.Singleton(ConfigOverrideRepo)
    connection_health = providers.Singleton(ConnectionHealthRepo)
    credential = providers.Singleton(CredentialRepo)
    manual_test_allowance = providers.Singleton(ManualTestAllowanceRepo)
    notification_record = providers.Singleton(NotificationRecordRepo)
    pending_transfer = providers.Singleton(PendingTransferRepo)
    refresh_log = providers.Singleton(RefreshLogRepo)
