from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from app.dependencies.tickets import StaffUser
from app.metrics import metrics_registry

router = APIRouter(tags=["health"])


@router.get("/ping", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics", response_class=PlainTextResponse, summary="Prometheus metrics for staff")
async def metrics(_: StaffUser) -> str:
    return metrics_registry.render_prometheus()
