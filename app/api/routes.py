from fastapi import APIRouter, Depends

from app.api.middlewares.authentication import require_api_client
from app.api.v1.admin import router as admin_router
from app.api.v1.connections import router as connections_router
from app.api.v1.dashboard import router as dashboard_router

api_router = APIRouter()

api_router.include_router(
    connections_router, prefix="/connections", tags=["connections"], dependencies=[Depends(require_api_client)]
)
api_router.include_router(
    dashboard_router, prefix="/dashboard", tags=["dashboard"], dependencies=[Depends(require_api_client)]
)
api_router.include_router(admin_router, prefix="/admin", tags=["admin"])
