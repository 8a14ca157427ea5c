from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from territory.business.reporting.activity.api import router as activity_reports_router
from territory.core.config import get_settings
from territory.crm.api import get_current_actor, router as assignments_router, scope_router
from territory.metrics import generate_metrics_payload, metrics_content_type
from territory.platform.security import Actor


router = APIRouter()
router.include_router(scope_router)
router.include_router(assignments_router)
router.include_router(activity_reports_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/api/me", tags=["auth"])
def me(actor: Actor = Depends(get_current_actor)) -> dict[str, str]:
    return {
        "employee_id": str(actor.employee_id),
        "role": actor.role,
    }


@router.get("/api/metrics", tags=["system"])
def metrics(actor: Actor = Depends(get_current_actor)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="metrics are restricted to admins")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
