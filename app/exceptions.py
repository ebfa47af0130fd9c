import enum
from http import HTTPStatus
from typing import Any


class ErrorType(enum.Enum):
    CONCURRENT_MODIFICATION = "concurrent_modification"
    CONFIRMATION_REQUIRED = "confirmation_required"
    ENTITY_NOT_FOUND = "entity_not_found"
    FORBIDDEN = "forbidden"
    INTERNAL_ERROR = "internal_error"
    INVALID_DATA = "invalid_data"
    INVALID_STATE = "invalid_state"
    RATE_LIMITED = "rate_limited"
    THIRD_PARTY_REQUEST = "third_party_request"
    UNHANDLED_EXCEPTION = "unhandled_exception"
    UNSPECIFIED = "unspecified"


class BaseError(Exception):
    extra: dict[str, Any]

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNSPECIFIED,
        status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.extra = {}

        action = kwargs.get("action")
        if action:
            self.extra["action"] = action
        user = kwargs.get("user")
        if user:
            self.extra["user"] = user
        provider = kwargs.get("provider")
        if provider:
            self.extra["provider"] = provider

    def __str__(self) -> str:
        return f"error: {self.error_type.value}; description: {self.message}"


class ActionForbiddenError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.FORBIDDEN,
        status_code: HTTPStatus = HTTPStatus.FORBIDDEN,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class EntityNotFoundError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.ENTITY_NOT_FOUND,
        status_code: HTTPStatus = HTTPStatus.NOT_FOUND,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class InvalidDataError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INVALID_DATA,
        status_code: HTTPStatus = HTTPStatus.BAD_REQUEST,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class ConfirmationRequiredError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.CONFIRMATION_REQUIRED,
        status_code: HTTPStatus = HTTPStatus.CONFLICT,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class RateLimitExceededError(BaseError):
    def __init__(
        self,
        message: str,
        retry_after: int | None = None,
        error_type: ErrorType = ErrorType.RATE_LIMITED,
        status_code: HTTPStatus = HTTPStatus.TOO_MANY_REQUESTS,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.extra["retry_after"] = retry_after


class ConcurrencyError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.CONCURRENT_MODIFICATION,
        status_code: HTTPStatus = HTTPStatus.CONFLICT,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class InternalError(BaseError):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_ERROR,
        status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)


class ProviderError(BaseError):
    """A failed call to the storage provider or its OAuth endpoint."""

    def __init__(
        self,
        message: str,
        provider_status: int | None = None,
        reason: str | None = None,
        retry_after: int | None = None,
        error_type: ErrorType = ErrorType.THIRD_PARTY_REQUEST,
        status_code: HTTPStatus = HTTPStatus.BAD_GATEWAY,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_type, status_code, **kwargs)
        self.provider_status = provider_status
        self.reason = reason
        self.retry_after = retry_after
        if provider_status is not None:
            self.extra["provider_status"] = provider_status
        if reason:
            self.extra["reason"] = reason
