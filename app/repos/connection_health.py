import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import insert

from app.models import ConnectionHealth, ConsolidatedStatus, HealthStatus, StorageProvider
from app.repos.base import BaseRepo


class ConnectionHealthRepo(BaseRepo[ConnectionHealth]):
    """Repository for ConnectionHealth model operations."""

    def __init__(self) -> None:
        super().__init__(ConnectionHealth)

    async def get_for_user(self, user_id: int, provider: StorageProvider) -> ConnectionHealth | None:
        result = await self.execute(
            self.base_stmt.where(ConnectionHealth.user_id == user_id, ConnectionHealth.provider == provider)
        )
        return result.one_or_none()

    async def get_or_create(self, user_id: int, provider: StorageProvider) -> ConnectionHealth:
        """Return the health record, inserting a blank one if this is the first event for the connection."""
        stmt = insert(ConnectionHealth).values(
            user_id=user_id,
            provider=provider,
            status=HealthStatus.disconnected,
            consolidated_status=ConsolidatedStatus.not_connected,
            version=1,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "provider"])

        await self._db.session.execute(stmt)
        await self._db.session.flush()

        connection_health = await self.get_for_user(user_id, provider)
        if connection_health is None:
            raise ValueError(f"Failed to create connection health for {user_id}/{provider.value}")
        return connection_health

    async def count_by_consolidated_status(self, provider: StorageProvider) -> dict[ConsolidatedStatus, int]:
        stmt = (
            sa.select(ConnectionHealth.consolidated_status, sa.func.count(ConnectionHealth.id))
            .where(ConnectionHealth.provider == provider)
            .group_by(ConnectionHealth.consolidated_status)
        )
        result = await self._db.session.execute(stmt)
        return {status: int(count) for status, count in result.all()}
