import asyncio
import logging
import time


class PeriodicWorker:
    """Runs ``tick()`` every ``interval_seconds()`` until ``shutdown()`` is called.

    A failing tick is logged and the loop carries on with the next one; the interval is read
    again before every sleep so runtime configuration changes apply without a restart.
    """

    name = "periodic"

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()
        self._stats = {
            "ticks": 0,
            "failed_ticks": 0,
            "last_tick_duration": 0.0,
        }

    @property
    def stats(self) -> dict[str, float]:
        return dict(self._stats)

    async def tick(self) -> None:
        raise NotImplementedError

    async def interval_seconds(self) -> float:
        raise NotImplementedError

    async def run(self) -> None:
        """Main loop of the worker."""
        self._logger.info(f"Starting {self.name} worker")
        try:
            while not self._shutdown_event.is_set():
                await self._run_tick()
                try:
                    interval = await self.interval_seconds()
                except Exception:
                    self._logger.exception(f"Could not read the {self.name} interval; retrying in 60s")
                    interval = 60
                await self._sleep(interval)
        finally:
            await self.cleanup()
            self._logger.info(f"{self.name} worker stopped after {self._stats['ticks']} ticks")

    async def shutdown(self) -> None:
        """Trigger shutdown of the worker; a tick in progress runs to completion."""
        self._logger.info(f"{self.name} worker: shutdown requested")
        self._shutdown_event.set()

    async def cleanup(self) -> None:
        pass

    async def _run_tick(self) -> None:
        started = time.monotonic()
        try:
            await self.tick()
        except Exception:
            self._stats["failed_ticks"] += 1
            self._logger.exception(f"{self.name} tick failed")
        finally:
            self._stats["ticks"] += 1
            self._stats["last_tick_duration"] = time.monotonic() - started

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
