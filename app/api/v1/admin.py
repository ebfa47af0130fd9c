"""
Admin router - runtime token refresh configuration.
"""

import logging

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends

from app.api.middlewares.authentication import require_admin
from app.api.payloads import (
    ConfigResponse,
    ConfigSummary,
    ConfigUpdate,
    ConfigUpdateRequest,
    ConfigUpdateResponse,
    ConfigValidation,
    ConfigValidationResponse,
)
from app.api.payloads.error import APIError
from app.container import ApplicationContainer
from app.controllers.config.config_service import ConfigService

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/config", response_model=ConfigResponse, summary="Get the current configuration")
@inject
async def get_config(
    config_service: ConfigService = Depends(Provide[ApplicationContainer.controllers.config_service]),
) -> ConfigResponse:
    await config_service.ensure_loaded()
    return ConfigResponse(data=ConfigSummary.model_validate(config_service.summary()))


@router.put(
    "/config",
    response_model=ConfigUpdateResponse,
    responses={
        400: {"model": APIError, "description": "Invalid value"},
        403: {"model": APIError, "description": "Key cannot be changed at runtime"},
        409: {"model": APIError, "description": "Change needs confirmation"},
    },
    summary="Change a setting",
    description="Persists a runtime override; some keys need ``confirmed`` set to true",
)
@inject
async def update_config(
    body: ConfigUpdateRequest,
    admin: str = Depends(require_admin),
    config_service: ConfigService = Depends(Provide[ApplicationContainer.controllers.config_service]),
) -> ConfigUpdateResponse:
    value = await config_service.set(body.key, body.value, confirmed=body.confirmed, updated_by=admin)
    return ConfigUpdateResponse(data=ConfigUpdate(key=body.key, value=value))


@router.post("/config/clear-cache", response_model=ConfigResponse, summary="Reload configuration overrides")
@inject
async def clear_config_cache(
    config_service: ConfigService = Depends(Provide[ApplicationContainer.controllers.config_service]),
) -> ConfigResponse:
    config_service.clear_cache()
    await config_service.reload()
    return ConfigResponse(data=ConfigSummary.model_validate(config_service.summary()))


@router.get("/config/validate", response_model=ConfigValidationResponse, summary="Validate the configuration")
@inject
async def validate_config(
    config_service: ConfigService = Depends(Provide[ApplicationContainer.controllers.config_service]),
) -> ConfigValidationResponse:
    await config_service.ensure_loaded()
    errors = config_service.validate()
    return ConfigValidationResponse(data=ConfigValidation(valid=not errors, errors=errors))
