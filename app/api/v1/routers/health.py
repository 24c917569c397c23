from fastapi import APIRouter

from app.core.limiter import limiter
from app.core.health import health_payload, live_payload, ready_payload

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
@limiter.exempt
async def health_ready() -> dict:
    return await ready_payload()


@router.get("/health", summary="Database and object store status")
@limiter.exempt
async def read_health() -> dict:
    return await health_payload()
