from dataclasses import dataclass
from datetime import datetime

import sqlalchemy as sa

from app.models import RefreshLog, RefreshOutcome, StorageProvider
from app.repos.base import BaseRepo


@dataclass(frozen=True)
class RefreshStats:
    attempts: int
    succeeded: int
    failed: int
    average_duration_ms: float


class RefreshLogRepo(BaseRepo[RefreshLog]):
    """Repository for RefreshLog model operations."""

    def __init__(self) -> None:
        super().__init__(RefreshLog)

    async def recent(self, provider: StorageProvider, limit: int) -> list[RefreshLog]:
        stmt = (
            self.base_stmt.where(RefreshLog.provider == provider)
            .order_by(RefreshLog.created_at.desc(), RefreshLog.id.desc())
            .limit(limit)
        )
        result = await self.execute(stmt)
        return list(result.all())

    async def stats_since(self, provider: StorageProvider, since: datetime) -> RefreshStats:
        attempted = RefreshLog.outcome.in_((RefreshOutcome.refreshed, RefreshOutcome.failed))
        stmt = sa.select(
            sa.func.count(RefreshLog.id).filter(attempted),
            sa.func.count(RefreshLog.id).filter(RefreshLog.outcome == RefreshOutcome.refreshed),
            sa.func.count(RefreshLog.id).filter(RefreshLog.outcome == RefreshOutcome.failed),
            sa.func.avg(RefreshLog.duration_ms).filter(attempted),
        ).where(RefreshLog.provider == provider, RefreshLog.created_at >= since)
        row = (await self._db.session.execute(stmt)).one()
        return RefreshStats(
            attempts=int(row[0]),
            succeeded=int(row[1]),
            failed=int(row[2]),
            average_duration_ms=float(row[3] or 0.0),
        )
