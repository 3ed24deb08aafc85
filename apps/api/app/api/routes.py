from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.leads.api import router as leads_router
from app.leads.commission.api import router as commission_router
from app.leads.compliance.api import router as dnd_router
from app.leads.policy.api import router as policy_router
from app.leads.reminders.api import router as activities_router
from app.leads.scheduler.api import router as sweeps_router
from app.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(policy_router)
router.include_router(dnd_router)
router.include_router(commission_router)
router.include_router(activities_router)
router.include_router(sweeps_router)
# Registered last: its "/{lead_id}" routes would otherwise shadow the fixed paths above.
router.include_router(leads_router)


@router.get("/api/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/api/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | int | list[str] | None]:
    return {
        "sub": user.sub,
        "roles": user.roles,
        "agent_id": user.agent_id,
    }


@router.get("/api/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
