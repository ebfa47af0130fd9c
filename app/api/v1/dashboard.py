from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query

from app.api.payloads import DashboardResponse, DashboardSnapshot
from app.container import ApplicationContainer
from app.controllers.health.dashboard import DashboardService
from app.models import StorageProvider

router = APIRouter()


@router.get(
    "/{provider}",
    response_model=DashboardResponse,
    summary="Get the monitoring dashboard",
    description="Connection counts, refresh statistics, pending uploads and active alerts for one provider",
)
@inject
async def get_dashboard(
    provider: StorageProvider = Path(..., examples=["google-drive"]),
    window_hours: int = Query(24, ge=1, le=720),
    dashboard: DashboardService = Depends(Provide[ApplicationContainer.controllers.dashboard]),
) -> DashboardResponse:
    snapshot = await dashboard.get_dashboard_snapshot(provider, window_hours)
    return DashboardResponse(data=DashboardSnapshot.model_validate(snapshot))
