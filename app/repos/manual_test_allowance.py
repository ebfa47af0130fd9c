from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import insert

from app.models import ManualTestAllowance
from app.repos.base import BaseRepo


class ManualTestAllowanceRepo(BaseRepo[ManualTestAllowance]):
    """Repository for ManualTestAllowance model operations."""

    def __init__(self) -> None:
        super().__init__(ManualTestAllowance)

    async def get_for(self, identity: str) -> ManualTestAllowance | None:
        result = await self.execute(self.base_stmt.where(ManualTestAllowance.identity == identity))
        return result.one_or_none()

    async def get_or_create(self, identity: str, now: datetime) -> ManualTestAllowance:
        stmt = insert(ManualTestAllowance).values(identity=identity, used=0.0, decayed_at=now, version=1)
        stmt = stmt.on_conflict_do_nothing(index_elements=["identity"])

        await self._db.session.execute(stmt)
        await self._db.session.flush()

        allowance = await self.get_for(identity)
        if allowance is None:
            raise ValueError(f"Failed to create manual test allowance for {identity}")
        return allowance

    async def delete_idle(self, idle_before: datetime, now: datetime) -> int:
        """Delete allowances untouched since ``idle_before`` with no test running."""
        stmt = sa.delete(ManualTestAllowance).where(
            ManualTestAllowance.decayed_at < idle_before,
            sa.or_(ManualTestAllowance.last_completed_at.is_(None), ManualTestAllowance.last_completed_at < idle_before),
            sa.or_(ManualTestAllowance.in_flight_until.is_(None), ManualTestAllowance.in_flight_until <= now),
        )
        result = await self._db.session.execute(stmt)
        return int(result.rowcount or 0)
