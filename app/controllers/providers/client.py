import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from app.exceptions import ProviderError
from app.models import StorageProvider
from settings import settings


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_in: int
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scopes: list[str] = field(default_factory=list)

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> "TokenGrant":
        scope = body.get("scope") or ""
        return cls(
            access_token=body["access_token"],
            expires_in=int(body.get("expires_in") or 3600),
            refresh_token=body.get("refresh_token"),
            token_type=body.get("token_type") or "Bearer",
            scopes=scope.split() if isinstance(scope, str) else list(scope),
        )


@dataclass(frozen=True)
class ProviderEndpoints:
    token_url: str
    api_base_url: str
    client_id: str
    client_secret: str


def _endpoints(provider: StorageProvider) -> ProviderEndpoints:
    if provider == StorageProvider.google_drive:
        return ProviderEndpoints(
            token_url=settings.oauth.google_token_url,
            api_base_url=settings.oauth.google_api_base_url,
            client_id=settings.oauth.google_client_id,
            client_secret=settings.oauth.google_client_secret,
        )
    raise ValueError(f"No endpoints configured for provider {provider.value}")


class ProviderClient:
    """HTTP client for the storage provider's OAuth token endpoint and API.

    Every call runs under ``settings.oauth.request_timeout``; a timeout surfaces as
    ``asyncio.TimeoutError`` and is left to the caller to classify.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)
        self._http_session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def init_session(self) -> None:
        """Initialize the shared HTTP session."""
        async with self._session_lock:
            if self._http_session is None:
                timeout = aiohttp.ClientTimeout(total=settings.oauth.request_timeout)
                self._http_session = aiohttp.ClientSession(timeout=timeout)

    async def close_session(self) -> None:
        """Close HTTP session."""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    async def refresh_access_token(self, provider: StorageProvider, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token."""
        await self.init_session()
        assert self._http_session is not None

        endpoints = _endpoints(provider)
        data = {
            "client_id": endpoints.client_id,
            "client_secret": endpoints.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        async with self._http_session.post(endpoints.token_url, data=data) as response:
            body = await self._read_body(response)
            if response.status >= 400:
                raise self._provider_error(provider, response, body)

        self._logger.debug(f"Token endpoint for {provider.value} returned a new access token")
        return TokenGrant.from_response(body)

    async def validate_access(self, provider: StorageProvider, access_token: str) -> None:
        """Make a minimal authenticated API call; raises ``ProviderError`` when the provider rejects it."""
        await self.init_session()
        assert self._http_session is not None

        endpoints = _endpoints(provider)
        headers = {"Authorization": f"Bearer {access_token}"}
        async with self._http_session.get(
            f"{endpoints.api_base_url}/about", params={"fields": "user"}, headers=headers
        ) as response:
            if response.status >= 400:
                body = await self._read_body(response)
                raise self._provider_error(provider, response, body)

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> dict[str, Any]:
        try:
            body = await response.json(content_type=None)
        except ValueError:
            return {"error_description": await response.text()}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _provider_error(
        provider: StorageProvider, response: aiohttp.ClientResponse, body: dict[str, Any]
    ) -> ProviderError:
        error = body.get("error")
        reason: str | None = None
        message = ""
        if isinstance(error, dict):
            # Drive API: {"error": {"code": 403, "message": ..., "errors": [{"reason": ...}]}}
            message = str(error.get("message") or "")
            errors = error.get("errors") or []
            if errors and isinstance(errors[0], dict):
                reason = errors[0].get("reason")
        elif isinstance(error, str):
            # OAuth token endpoint: {"error": "invalid_grant", "error_description": ...}
            reason = error
            message = str(body.get("error_description") or error)
        else:
            message = str(body.get("error_description") or response.reason or "")

        retry_after_header = response.headers.get("Retry-After")
        retry_after = int(retry_after_header) if retry_after_header and retry_after_header.isdigit() else None
        return ProviderError(
            message or f"HTTP {response.status}",
            provider_status=response.status,
            reason=reason,
            retry_after=retry_after,
            provider=provider.value,
        )
