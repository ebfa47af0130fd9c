import logging
from typing import Protocol

from app.models import PendingTransfer


class UploadDispatcher(Protocol):
    """Hands a transfer back to the upload pipeline. The transfer API itself is out of this service's hands."""

    async def dispatch(self, transfer: PendingTransfer) -> None: ...


class LoggingUploadDispatcher:
    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    async def dispatch(self, transfer: PendingTransfer) -> None:
        self._logger.info(
            f"Re-queued transfer {transfer.id} ({transfer.original_filename}) for user {transfer.user_id}, "
            f"recovery attempt {transfer.recovery_attempts}"
        )
