from app.controllers.tokens.refresh_scheduler import worker_session_scope
from app.controllers.uploads.recovery import RecoveryReport, UploadRecoveryCoordinator
from settings import settings
from workers.periodic import PeriodicWorker


class RecoveryWorker(PeriodicWorker):
    """Re-queues stuck and failed uploads every ``WORKER_RECOVERY_INTERVAL_MINUTES``."""

    name = "upload recovery"

    def __init__(self, upload_recovery: UploadRecoveryCoordinator) -> None:
        super().__init__()
        self._upload_recovery = upload_recovery
        self.last_report: RecoveryReport | None = None

    async def tick(self) -> None:
        async with worker_session_scope():
            self.last_report = await self._upload_recovery.process_pending()

    async def interval_seconds(self) -> float:
        return settings.worker.recovery_interval_minutes * 60
