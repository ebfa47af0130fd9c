"""
Middleware committing the request's database session once the handler has returned.
"""

import logging
from typing import Awaitable, Callable

from fastapi import Request, Response
from fastapi_async_sqlalchemy import db
from fastapi_async_sqlalchemy.exceptions import MissingSessionError
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AutoCommitMiddleware(BaseHTTPMiddleware):
    """
    Commits whatever the handler left pending (e.g. a freshly created health row) on success and
    rolls it back when the handler raised or answered with a server error.

    Controllers that need a versioned write to land commit it themselves through the repos; this
    only catches the rest.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        try:
            response = await call_next(request)
        except Exception as e:
            await self._rollback(f"Request {request.method} {request.url.path} raised: {e}")
            raise

        if response.status_code >= 500:
            await self._rollback(f"Request {request.method} {request.url.path} answered {response.status_code}")
            return response

        try:
            await db.session.commit()
            logger.debug("Database transaction committed successfully")
        except MissingSessionError:
            logger.debug("No database session found for request - skipping commit")
        except Exception as e:
            logger.warning(f"Failed to commit database transaction: {e}")

        return response

    @staticmethod
    async def _rollback(reason: str) -> None:
        try:
            await db.session.rollback()
            logger.error(f"Database transaction rolled back; {reason}")
        except MissingSessionError:
            logger.debug("No database session found for rollback - skipping rollback")
        except Exception as e:
            logger.warning(f"Failed to rollback database transaction: {e}")
