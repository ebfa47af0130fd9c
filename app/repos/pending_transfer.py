from datetime import datetime

import sqlalchemy as sa

from app.models import PendingTransfer, StorageProvider, TransferStatus
from app.repos.base import BaseRepo

ACTIVE_STATUSES = (TransferStatus.pending, TransferStatus.retrying)


class PendingTransferRepo(BaseRepo[PendingTransfer]):
    """Repository for PendingTransfer model operations."""

    def __init__(self) -> None:
        super().__init__(PendingTransfer)

    async def get_active(self, limit: int, after_id: int = 0) -> list[PendingTransfer]:
        stmt = (
            self.base_stmt.where(PendingTransfer.status.in_(ACTIVE_STATUSES), PendingTransfer.id > after_id)
            .order_by(PendingTransfer.id.asc())
            .limit(limit)
        )
        result = await self.execute(stmt)
        return list(result.all())

    async def count_by_status(self, provider: StorageProvider | None = None) -> dict[TransferStatus, int]:
        stmt = sa.select(PendingTransfer.status, sa.func.count(PendingTransfer.id)).group_by(PendingTransfer.status)
        if provider is not None:
            stmt = stmt.where(PendingTransfer.provider == provider)
        result = await self._db.session.execute(stmt)
        return {status: int(count) for status, count in result.all()}

    async def count_stuck(self, stuck_before: datetime, provider: StorageProvider | None = None) -> int:
        last_progress = sa.func.coalesce(PendingTransfer.last_processed_at, PendingTransfer.created_at)
        stmt = sa.select(sa.func.count(PendingTransfer.id)).where(
            PendingTransfer.status.in_(ACTIVE_STATUSES), last_progress < stuck_before
        )
        if provider is not None:
            stmt = stmt.where(PendingTransfer.provider == provider)
        result = await self._db.session.execute(stmt)
        return int(result.scalar_one())
