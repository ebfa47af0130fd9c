from sqlalchemy.dialects.postgresql import insert

from app.models import NotificationCondition, NotificationRecord, StorageProvider
from app.repos.base import BaseRepo


class NotificationRecordRepo(BaseRepo[NotificationRecord]):
    """Repository for NotificationRecord model operations."""

    def __init__(self) -> None:
        super().__init__(NotificationRecord)

    async def get_for(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition
    ) -> NotificationRecord | None:
        result = await self.execute(
            self.base_stmt.where(
                NotificationRecord.user_id == user_id,
                NotificationRecord.provider == provider,
                NotificationRecord.condition == condition,
            )
        )
        return result.one_or_none()

    async def get_or_create(
        self, user_id: int, provider: StorageProvider, condition: NotificationCondition
    ) -> NotificationRecord:
        stmt = insert(NotificationRecord).values(
            user_id=user_id, provider=provider, condition=condition, failure_count=0, version=1
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "provider", "condition"])

        await self._db.session.execute(stmt)
        await self._db.session.flush()

        record = await self.get_for(user_id, provider, condition)
        if record is None:
            raise ValueError(f"Failed to create notification record for {user_id}/{provider.value}/{condition.value}")
        return record
