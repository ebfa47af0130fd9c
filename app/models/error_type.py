from dataclasses import dataclass
from enum import Enum


class ErrorSeverity(Enum):
    low = "low"
    medium = "medium"
    high = "high"


class CloudStorageErrorType(Enum):
    token_expired = "token_expired"
    invalid_credentials = "invalid_credentials"
    insufficient_permissions = "insufficient_permissions"
    storage_quota_exceeded = "storage_quota_exceeded"
    api_quota_exceeded = "api_quota_exceeded"
    network_error = "network_error"
    timeout = "timeout"
    service_unavailable = "service_unavailable"
    file_not_found = "file_not_found"
    folder_access_denied = "folder_access_denied"
    invalid_file_type = "invalid_file_type"
    file_too_large = "file_too_large"
    invalid_file_content = "invalid_file_content"
    unknown_error = "unknown_error"

    @property
    def metadata(self) -> "ErrorMetadata":
        return ERROR_METADATA[self]

    @property
    def is_recoverable(self) -> bool:
        return self.metadata.recoverable

    @property
    def requires_intervention(self) -> bool:
        return self.metadata.requires_intervention

    @property
    def severity(self) -> ErrorSeverity:
        return self.metadata.severity

    @property
    def is_auth_error(self) -> bool:
        return self in AUTH_ERROR_TYPES


@dataclass(frozen=True)
class ErrorMetadata:
    recoverable: bool
    requires_intervention: bool
    severity: ErrorSeverity
    message_template: str


AUTH_ERROR_TYPES = frozenset(
    {
        CloudStorageErrorType.token_expired,
        CloudStorageErrorType.invalid_credentials,
        CloudStorageErrorType.insufficient_permissions,
    }
)

# Templates are rendered with str.format; available keys are provider, file_name, operation,
# retry_hint and original_message.
ERROR_METADATA: dict[CloudStorageErrorType, ErrorMetadata] = {
    CloudStorageErrorType.token_expired: ErrorMetadata(
        recoverable=False,
        requires_intervention=True,
        severity=ErrorSeverity.high,
        message_template=(
            "Your {provider} connection has expired. "
            "Please reconnect your {provider} account to continue uploading files."
        ),
    ),
    CloudStorageErrorType.invalid_credentials: ErrorMetadata(
        recoverable=False,
        requires_intervention=True,
        severity=ErrorSeverity.high,
        message_template="Invalid {provider} credentials. Please reconnect your {provider} account in the settings.",
    ),
    CloudStorageErrorType.insufficient_permissions: ErrorMetadata(
        recoverable=False,
        requires_intervention=True,
        severity=ErrorSeverity.high,
        message_template=(
            "Insufficient {provider} permissions. "
            "Please reconnect your account and ensure you grant full access to {provider}."
        ),
    ),
    CloudStorageErrorType.storage_quota_exceeded: ErrorMetadata(
        recoverable=False,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template=(
            "Your {provider} storage is full. "
            "Please free up space in your {provider} account or upgrade your storage plan."
        ),
    ),
    CloudStorageErrorType.api_quota_exceeded: ErrorMetadata(
        recoverable=False,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template=(
            "{provider} API limit reached. Please upload the file again in {retry_hint} "
            "or reduce the number of uploads in progress."
        ),
    ),
    CloudStorageErrorType.network_error: ErrorMetadata(
        recoverable=True,
        requires_intervention=False,
        severity=ErrorSeverity.low,
        message_template=(
            "Network connection issue prevented the {provider} {operation}. The upload will be retried automatically."
        ),
    ),
    CloudStorageErrorType.timeout: ErrorMetadata(
        recoverable=True,
        requires_intervention=False,
        severity=ErrorSeverity.low,
        message_template=(
            "The {provider} {operation} timed out. This is usually temporary and will be retried automatically."
        ),
    ),
    CloudStorageErrorType.service_unavailable: ErrorMetadata(
        recoverable=True,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template=(
            "{provider} is temporarily unavailable. "
            "Your uploads will be retried automatically when the service is restored."
        ),
    ),
    CloudStorageErrorType.file_not_found: ErrorMetadata(
        recoverable=False,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template="The file '{file_name}' could not be found in {provider}. It may have been deleted or moved.",
    ),
    CloudStorageErrorType.folder_access_denied: ErrorMetadata(
        recoverable=False,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template=(
            "Access denied to the {provider} folder. "
            "Please check the target folder permissions or choose a different folder."
        ),
    ),
    CloudStorageErrorType.invalid_file_type: ErrorMetadata(
        recoverable=False,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template=(
            "The file type of '{file_name}' is not supported by {provider}. Please try a different file format."
        ),
    ),
    CloudStorageErrorType.file_too_large: ErrorMetadata(
        recoverable=False,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template="The file '{file_name}' is too large for {provider}. Please upload a smaller file.",
    ),
    CloudStorageErrorType.invalid_file_content: ErrorMetadata(
        recoverable=False,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template=(
            "The file '{file_name}' appears to be corrupted or has invalid content. "
            "Please try uploading the file again."
        ),
    ),
    CloudStorageErrorType.unknown_error: ErrorMetadata(
        recoverable=True,
        requires_intervention=False,
        severity=ErrorSeverity.medium,
        message_template="An unexpected error occurred with {provider}. {original_message}",
    ),
}
