import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from settings import settings

security = HTTPBearer()


def _matches(token: str, expected: str | None) -> bool:
    return bool(expected) and secrets.compare_digest(token, expected)


async def require_api_client(credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)]) -> str:
    """
    FastAPI dependency guarding the connection and dashboard endpoints.

    Accepts the service ``API_TOKEN`` used by the application backend, and the ``ADMIN_API_TOKEN``.

    Returns:
        A label for the caller

    Raises:
        HTTPException: If no token is configured or the bearer token does not match
    """
    if not settings.api_token and not settings.admin_api_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="API is disabled.")
    if _matches(credentials.credentials, settings.api_token):
        return "service"
    if _matches(credentials.credentials, settings.admin_api_token):
        return "admin"
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key.")


async def require_admin(credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)]) -> str:
    """
    FastAPI dependency guarding the admin endpoints with the static ``ADMIN_API_TOKEN``.

    Returns:
        A label for the caller, recorded as ``updated_by`` on configuration changes

    Raises:
        HTTPException: If no admin token is configured or the bearer token does not match
    """
    expected = settings.admin_api_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API is disabled.")
    if not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key.")
    return "admin"
