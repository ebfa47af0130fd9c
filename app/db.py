from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi_async_sqlalchemy import SQLAlchemyMiddleware, db
from starlette.applications import Starlette

from settings import settings


@asynccontextmanager
async def fastapi_sqlalchemy_context() -> AsyncGenerator[None, None]:
    """Bind the fastapi_async_sqlalchemy ``db`` global outside of a request, for workers and scripts."""

    # The middleware binds the engine and session factory when constructed
    app = Starlette()
    SQLAlchemyMiddleware(
        app,
        db_url=settings.database.url,
        engine_args={
            "echo": False,
            "pool_size": settings.database.min_pool_size,
            "max_overflow": settings.database.max_pool_size - settings.database.min_pool_size,
            "pool_pre_ping": True,
        },
    )

    async with db():
        yield
