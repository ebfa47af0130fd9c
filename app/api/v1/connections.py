"""
Connections router - status, health and manual tests of a user's storage connection.
"""

import logging

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Request

from app.api.payloads import (
    ConnectionHealthResponse,
    ConnectionHealthSummary,
    ConnectionStatus,
    ConnectionStatusResponse,
    ConnectionTest,
    ConnectionTestResponse,
)
from app.api.payloads.error import APIError
from app.container import ApplicationContainer
from app.controllers.config.config_service import ConfigService
from app.controllers.health.connection_tester import ConnectionTester
from app.controllers.health.tracker import HealthStatusTracker
from app.models import StorageProvider

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/{user_id}/{provider}/status",
    response_model=ConnectionStatusResponse,
    summary="Get connection status",
    description="Returns the consolidated status of the user's connection and a message to show them",
)
@inject
async def get_connection_status(
    user_id: int = Path(..., examples=[42]),
    provider: StorageProvider = Path(..., examples=["google-drive"]),
    health_tracker: HealthStatusTracker = Depends(Provide[ApplicationContainer.controllers.health_tracker]),
) -> ConnectionStatusResponse:
    summary = await health_tracker.get_health_summary(user_id, provider)
    return ConnectionStatusResponse(
        data=ConnectionStatus(
            user_id=user_id,
            provider=provider,
            consolidated_status=summary.consolidated_status,
            message=summary.message,
        )
    )


@router.get(
    "/{user_id}/{provider}/health",
    response_model=ConnectionHealthResponse,
    summary="Get connection health",
    description="Returns the detailed health record behind the consolidated status",
)
@inject
async def get_connection_health(
    user_id: int = Path(..., examples=[42]),
    provider: StorageProvider = Path(..., examples=["google-drive"]),
    health_tracker: HealthStatusTracker = Depends(Provide[ApplicationContainer.controllers.health_tracker]),
) -> ConnectionHealthResponse:
    summary = await health_tracker.get_health_summary(user_id, provider)
    return ConnectionHealthResponse(data=ConnectionHealthSummary.model_validate(summary, from_attributes=True))


@router.post(
    "/{user_id}/{provider}/test",
    response_model=ConnectionTestResponse,
    responses={
        429: {"model": APIError, "description": "Too many connection tests"},
    },
    summary="Test a connection",
    description="Refreshes the token if it is about to expire and checks it against the provider API",
)
@inject
async def test_connection(
    request: Request,
    user_id: int = Path(..., examples=[42]),
    provider: StorageProvider = Path(..., examples=["google-drive"]),
    connection_tester: ConnectionTester = Depends(Provide[ApplicationContainer.controllers.connection_tester]),
    config_service: ConfigService = Depends(Provide[ApplicationContainer.controllers.config_service]),
) -> ConnectionTestResponse:
    ip_based = bool(config_service.get("rate_limiting.ip_based_limiting"))
    client_ip = request.client.host if request.client else None
    identity = connection_tester.identity_for(user_id, provider, client_ip, ip_based)

    result = await connection_tester.test_connection(user_id, provider, identity)
    return ConnectionTestResponse(data=ConnectionTest.model_validate(result, from_attributes=True))
