import logging
from typing import Any, Generic, TypeVar, cast

from fastapi_async_sqlalchemy import db
from sqlalchemy import ScalarResult, select
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql.selectable import Select

from app.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)


class BaseRepo(Generic[ModelType]):
    """Base repository working on the ambient fastapi_async_sqlalchemy session."""

    def __init__(self, model: type[ModelType]) -> None:
        self._model = model
        self._db = db

    @property
    def base_stmt(self) -> Select[tuple[ModelType]]:
        """Base select statement for the model."""
        return select(self._model)

    async def get(self, id: Any) -> ModelType | None:
        """Get a model by ID."""
        return cast(ModelType | None, await self._db.session.get(self._model, id))

    async def execute(self, query: Select[tuple[ModelType]]) -> ScalarResult[ModelType]:
        """Execute a query and return scalar results."""
        result = await self._db.session.execute(query)
        return cast(ScalarResult[ModelType], result.scalars())

    async def add(self, model: ModelType, commit: bool = False) -> None:
        """Add a model instance."""
        self._db.session.add(model)
        if commit:
            await self.commit()
        else:
            await self.flush()

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._db.session.commit()

    async def try_commit(self) -> bool:
        """Commit, returning False instead of raising when a versioned row was changed by someone else."""
        try:
            await self._db.session.commit()
        except StaleDataError as e:
            logger.info(f"Stale {self._model.__name__} write discarded: {e}")
            await self._db.session.rollback()
            return False
        return True

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        await self._db.session.rollback()

    async def flush(self) -> None:
        """Flush the current session."""
        await self._db.session.flush()
