import asyncio
import logging
import math
import socket
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from app.exceptions import ProviderError
from app.models import CloudStorageErrorType, StorageProvider

DEFAULT_ORIGINAL_MESSAGE = "Please try again or contact support if the problem persists."

# Google API "reason" codes and OAuth token endpoint "error" codes.
_REASON_TYPES: dict[str, CloudStorageErrorType] = {
    "notFound": CloudStorageErrorType.file_not_found,
    "authError": CloudStorageErrorType.token_expired,
    "unauthorized": CloudStorageErrorType.token_expired,
    "invalid_grant": CloudStorageErrorType.token_expired,
    "invalid_client": CloudStorageErrorType.invalid_credentials,
    "unauthorized_client": CloudStorageErrorType.invalid_credentials,
    "invalid_scope": CloudStorageErrorType.insufficient_permissions,
    "insufficientPermissions": CloudStorageErrorType.insufficient_permissions,
    "quotaExceeded": CloudStorageErrorType.api_quota_exceeded,
    "rateLimitExceeded": CloudStorageErrorType.api_quota_exceeded,
    "userRateLimitExceeded": CloudStorageErrorType.api_quota_exceeded,
    "storageQuotaExceeded": CloudStorageErrorType.storage_quota_exceeded,
    "backendError": CloudStorageErrorType.service_unavailable,
    "internalError": CloudStorageErrorType.service_unavailable,
    "serviceUnavailable": CloudStorageErrorType.service_unavailable,
    "invalidFileType": CloudStorageErrorType.invalid_file_type,
    "fileTooLarge": CloudStorageErrorType.file_too_large,
}

_STATUS_TYPES: dict[int, CloudStorageErrorType] = {
    404: CloudStorageErrorType.file_not_found,
    408: CloudStorageErrorType.timeout,
    413: CloudStorageErrorType.file_too_large,
    415: CloudStorageErrorType.invalid_file_type,
    422: CloudStorageErrorType.invalid_file_content,
    429: CloudStorageErrorType.api_quota_exceeded,
    500: CloudStorageErrorType.service_unavailable,
    502: CloudStorageErrorType.service_unavailable,
    503: CloudStorageErrorType.service_unavailable,
    504: CloudStorageErrorType.service_unavailable,
}

_TIMEOUT_PATTERNS = ("timeout", "timed out")
_NETWORK_PATTERNS = (
    "connection refused",
    "connection reset",
    "network unreachable",
    "name resolution",
    "could not resolve",
    "dns",
)
_TOKEN_EXPIRED_PATTERNS = ("invalid_grant", "token has been expired or revoked", "token expired")
_CREDENTIAL_PATTERNS = ("invalid_client", "invalid credentials", "unauthorized_client")


@dataclass(frozen=True)
class ClassifiedError:
    type: CloudStorageErrorType
    message: str
    context: dict[str, Any] = field(default_factory=dict)


class ErrorClassifier:
    """Maps raw provider failures onto ``CloudStorageErrorType``.

    This is the only place that inspects exception classes, HTTP statuses or message text;
    everything downstream reads the metadata attached to the returned type.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    def classify(self, error: BaseException) -> CloudStorageErrorType:
        if isinstance(error, ProviderError):
            return self._classify_provider_error(error)
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return CloudStorageErrorType.timeout
        if isinstance(error, FileNotFoundError):
            return CloudStorageErrorType.file_not_found
        if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError, socket.gaierror)):
            return CloudStorageErrorType.network_error
        return self._classify_message(str(error))

    def describe(self, error: BaseException, **context: Any) -> ClassifiedError:
        """Classify ``error`` and bundle it with the structured context stored alongside it."""
        error_type = self.classify(error)
        message = error.message if isinstance(error, ProviderError) else str(error)
        details: dict[str, Any] = {
            "original_message": message or type(error).__name__,
            "exception_type": type(error).__name__,
        }
        if isinstance(error, ProviderError):
            if error.provider_status is not None:
                details["provider_status"] = error.provider_status
            if error.reason:
                details["reason"] = error.reason
            if error.retry_after is not None:
                details["retry_after"] = error.retry_after
        details.update({key: value for key, value in context.items() if value is not None})

        self._logger.debug(f"Classified {type(error).__name__} as {error_type.value}: {message}")
        return ClassifiedError(type=error_type, message=message, context=details)

    def render_message(
        self,
        error_type: CloudStorageErrorType,
        provider: StorageProvider,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Human readable message for ``error_type``, never the raw exception text."""
        context = context or {}
        values: defaultdict[str, str] = defaultdict(str)
        values.update(
            provider=provider.display_name,
            file_name=str(context.get("file_name") or "file"),
            operation=str(context.get("operation") or "operation"),
            retry_hint=self._retry_hint(context.get("retry_after")),
            original_message=str(context.get("original_message") or DEFAULT_ORIGINAL_MESSAGE),
        )
        return error_type.metadata.message_template.format_map(values)

    @staticmethod
    def retry_delay(
        error_type: CloudStorageErrorType, attempt: int, context: dict[str, Any] | None = None
    ) -> int | None:
        """Seconds to wait before attempt ``attempt + 1``; None when retrying will not help."""
        attempt = max(attempt, 1)
        if error_type == CloudStorageErrorType.api_quota_exceeded:
            retry_after = (context or {}).get("retry_after")
            return int(retry_after) if retry_after else 3600
        if not error_type.is_recoverable:
            return None
        if error_type == CloudStorageErrorType.network_error:
            return 0
        if error_type == CloudStorageErrorType.timeout:
            return min(600, 60 * attempt)
        if error_type == CloudStorageErrorType.service_unavailable:
            return min(1800, 60 * 2 ** (attempt - 1))
        return min(300, 30 * attempt)

    def _classify_provider_error(self, error: ProviderError) -> CloudStorageErrorType:
        if error.reason and error.reason in _REASON_TYPES:
            return _REASON_TYPES[error.reason]

        message = error.message.lower()
        status = error.provider_status
        if status == 401:
            if any(pattern in message for pattern in _CREDENTIAL_PATTERNS) or "client" in message:
                return CloudStorageErrorType.invalid_credentials
            return CloudStorageErrorType.token_expired
        if status == 403:
            if "storage" in message and "quota" in message:
                return CloudStorageErrorType.storage_quota_exceeded
            if "rate limit" in message or "ratelimit" in message or "quota" in message:
                return CloudStorageErrorType.api_quota_exceeded
            if "folder" in message or "directory" in message:
                return CloudStorageErrorType.folder_access_denied
            return CloudStorageErrorType.insufficient_permissions
        if status is not None and status in _STATUS_TYPES:
            return _STATUS_TYPES[status]
        return self._classify_message(message)

    @staticmethod
    def _classify_message(message: str) -> CloudStorageErrorType:
        message = message.lower()
        if any(pattern in message for pattern in _TIMEOUT_PATTERNS):
            return CloudStorageErrorType.timeout
        if any(pattern in message for pattern in _NETWORK_PATTERNS):
            return CloudStorageErrorType.network_error
        if any(pattern in message for pattern in _TOKEN_EXPIRED_PATTERNS):
            return CloudStorageErrorType.token_expired
        if any(pattern in message for pattern in _CREDENTIAL_PATTERNS):
            return CloudStorageErrorType.invalid_credentials
        return CloudStorageErrorType.unknown_error

    @staticmethod
    def _retry_hint(retry_after: Any) -> str:
        if not retry_after:
            return "1 hour"
        minutes = math.ceil(int(retry_after) / 60)
        if minutes <= 60:
            return f"{minutes} minutes"
        return f"{math.ceil(minutes / 60)} hours"
