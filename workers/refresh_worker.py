from app.controllers.config.config_service import ConfigService
from app.controllers.providers.client import ProviderClient
from app.controllers.tokens.refresh_scheduler import RefreshScheduler, TickReport, worker_session_scope
from workers.periodic import PeriodicWorker


class RefreshWorker(PeriodicWorker):
    """Proactively refreshes expiring OAuth tokens every ``timing.background_refresh_minutes``."""

    name = "token refresh"

    def __init__(
        self, refresh_scheduler: RefreshScheduler, config_service: ConfigService, provider_client: ProviderClient
    ) -> None:
        super().__init__()
        self._refresh_scheduler = refresh_scheduler
        self._config_service = config_service
        self._provider_client = provider_client
        self.last_report: TickReport | None = None

    async def tick(self) -> None:
        self.last_report = await self._refresh_scheduler.run_tick()

    async def interval_seconds(self) -> float:
        async with worker_session_scope():
            config = await self._config_service.ensure_loaded()
        return config.background_refresh_interval.total_seconds()

    async def cleanup(self) -> None:
        await self._provider_client.close_session()
