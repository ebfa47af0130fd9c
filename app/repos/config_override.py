from sqlalchemy.dialects.postgresql import insert

from app.models import ConfigOverride
from app.repos.base import BaseRepo


class ConfigOverrideRepo(BaseRepo[ConfigOverride]):
    """Repository for ConfigOverride model operations."""

    def __init__(self) -> None:
        super().__init__(ConfigOverride)

    async def get_all(self) -> list[ConfigOverride]:
        result = await self.execute(self.base_stmt.order_by(ConfigOverride.key))
        return list(result.all())

    async def upsert(self, key: str, value: str, updated_by: str | None = None) -> None:
        stmt = insert(ConfigOverride).values(key=key, value=value, updated_by=updated_by)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_by": stmt.excluded.updated_by},
        )
        await self._db.session.execute(stmt)
        await self._db.session.flush()
