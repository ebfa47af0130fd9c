import uuid
from typing import Any

from pydantic import BaseModel, Field


class ConfigUpdateRequest(BaseModel):
    """Request model for changing one runtime setting, e.g. ``timing.max_retry_attempts``."""

    key: str
    value: bool | int | str
    confirmed: bool = False


class ConfigSummary(BaseModel):
    settings: dict[str, dict[str, Any]]
    overridden: list[str]
    modifiable: list[str]
    requires_confirmation: list[str]
    allow_runtime_changes: bool


class ConfigResponse(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: ConfigSummary


class ConfigUpdate(BaseModel):
    key: str
    value: bool | int | str


class ConfigUpdateResponse(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: ConfigUpdate


class ConfigValidation(BaseModel):
    valid: bool
    errors: list[str]


class ConfigValidationResponse(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    data: ConfigValidation
