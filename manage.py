#!/usr/bin/env python3
"""
Cloud storage connection maintenance

Runs the background workers that keep OAuth tokens fresh and re-queue failed uploads, plus a
few one-off maintenance commands.

Usage:
    python manage.py [--mode MODE] [--provider PROVIDER]

Modes:
    - workers: token refresh and upload recovery workers together (default)
    - refresh: token refresh worker only
    - recovery: upload recovery worker only
    - refresh-once: a single token refresh tick
    - recover-once: a single upload recovery pass
    - backfill-health: recompute the stored status of every connection
    - config: print the effective configuration and its validation errors
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from dotenv import load_dotenv

load_dotenv(override=True)
from app.container import ApplicationContainer  # noqa: E402
from app.controllers.tokens.refresh_scheduler import worker_session_scope  # noqa: E402
from app.db import fastapi_sqlalchemy_context  # noqa: E402
from app.models import StorageProvider  # noqa: E402
from logging_config import setup_logging  # noqa: E402
from settings import settings  # noqa: E402
from workers.periodic import PeriodicWorker  # noqa: E402
from workers.recovery_worker import RecoveryWorker  # noqa: E402
from workers.refresh_worker import RefreshWorker  # noqa: E402

setup_logging()

logger = logging.getLogger(__name__)

# Global container instance
container = ApplicationContainer()


def _build_workers(mode: str) -> list[PeriodicWorker]:
    workers: list[PeriodicWorker] = []
    if mode in ("workers", "refresh"):
        workers.append(
            RefreshWorker(
                refresh_scheduler=container.controllers.refresh_scheduler(),
                config_service=container.controllers.config_service(),
                provider_client=container.controllers.provider_client(),
            )
        )
    if mode in ("workers", "recovery"):
        workers.append(RecoveryWorker(upload_recovery=container.controllers.upload_recovery()))
    return workers


async def run_workers(mode: str) -> None:
    """Run the periodic workers until SIGINT or SIGTERM."""
    async with fastapi_sqlalchemy_context():
        workers = _build_workers(mode)

        shutdown_event = asyncio.Event()

        def signal_handler() -> None:
            logger.info("Received shutdown signal")
            shutdown_event.set()

        loop = asyncio.get_running_loop()
        for sig in [signal.SIGINT, signal.SIGTERM]:
            loop.add_signal_handler(sig, signal_handler)

        tasks = [asyncio.create_task(worker.run()) for worker in workers]
        logger.info(f"Started {len(tasks)} workers in {mode} mode")

        await shutdown_event.wait()

        logger.info("Initiating graceful shutdown...")
        for worker in workers:
            await worker.shutdown()
        done, pending = await asyncio.wait(tasks, timeout=settings.worker.shutdown_timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if pending:
            logger.warning(f"{len(pending)} workers did not stop within {settings.worker.shutdown_timeout}s")


async def refresh_once() -> None:
    async with fastapi_sqlalchemy_context():
        provider_client = container.controllers.provider_client()
        try:
            report = await container.controllers.refresh_scheduler().run_tick()
        finally:
            await provider_client.close_session()
    print(json.dumps(report.__dict__, indent=2))


async def recover_once() -> None:
    async with fastapi_sqlalchemy_context():
        async with worker_session_scope():
            report = await container.controllers.upload_recovery().process_pending()
    print(json.dumps(report.__dict__, indent=2))


async def backfill_health(provider: StorageProvider | None) -> None:
    async with fastapi_sqlalchemy_context():
        async with worker_session_scope():
            changed = await container.controllers.health_tracker().backfill(provider)
    logger.info(f"Health backfill changed {changed} connections")


async def show_config() -> None:
    async with fastapi_sqlalchemy_context():
        config_service = container.controllers.config_service()
        async with worker_session_scope():
            await config_service.reload()
    print(json.dumps({**config_service.summary(), "errors": config_service.validate()}, indent=2, default=str))


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Cloud storage connection maintenance")
    parser.add_argument(
        "--mode",
        choices=["workers", "refresh", "recovery", "refresh-once", "recover-once", "backfill-health", "config"],
        default="workers",
        help="Operating mode",
    )
    parser.add_argument(
        "--provider",
        choices=[provider.value for provider in StorageProvider],
        help="Limit backfill-health to one provider",
    )

    args = parser.parse_args()

    try:
        if args.mode in ("workers", "refresh", "recovery"):
            asyncio.run(run_workers(args.mode))
        elif args.mode == "refresh-once":
            asyncio.run(refresh_once())
        elif args.mode == "recover-once":
            asyncio.run(recover_once())
        elif args.mode == "backfill-health":
            asyncio.run(backfill_health(StorageProvider(args.provider) if args.provider else None))
        elif args.mode == "config":
            asyncio.run(show_config())

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception:
        logger.exception("Command failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
