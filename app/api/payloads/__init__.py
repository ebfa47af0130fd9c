"""
API models package for Pydantic response/request models.
"""

from .config import (
    ConfigResponse,
    ConfigSummary,
    ConfigUpdate,
    ConfigUpdateRequest,
    ConfigUpdateResponse,
    ConfigValidation,
    ConfigValidationResponse,
)
from .connections import (
    ConnectionHealthResponse,
    ConnectionHealthSummary,
    ConnectionStatus,
    ConnectionStatusResponse,
    ConnectionTest,
    ConnectionTestResponse,
)
from .dashboard import DashboardResponse, DashboardSnapshot

__all__ = [
    "ConfigResponse",
    "ConfigSummary",
    "ConfigUpdate",
    "ConfigUpdateRequest",
    "ConfigUpdateResponse",
    "ConfigValidation",
    "ConfigValidationResponse",
    "ConnectionHealthResponse",
    "ConnectionHealthSummary",
    "ConnectionStatus",
    "ConnectionStatusResponse",
    "ConnectionTest",
    "ConnectionTestResponse",
    "DashboardResponse",
    "DashboardSnapshot",
]
