"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse

from chirisu.infra.postgres import get_pool
from chirisu.infra.redis import redis_client
from chirisu.obs import metrics as obs_metrics
from chirisu.obs.logging import get_logger
from chirisu.settings import settings

router = APIRouter(prefix="", tags=["ops"])
logger = get_logger("chirisu.ops")


@router.get("/health")
async def health_live() -> dict[str, str]:
	return {"status": "ok", "service": settings.service_name, "commit": settings.git_commit}


@router.get("/health/ready")
async def health_ready() -> Response:
	checks: dict[str, str] = {}
	try:
		pool = await get_pool()
		async with pool.acquire() as conn:
			await conn.execute("SELECT 1")
		checks["postgres"] = "ok"
	except Exception:
		logger.warning("postgres readiness check failed", exc_info=True)
		checks["postgres"] = "unavailable"
	try:
		await redis_client.ping()
		checks["redis"] = "ok"
	except Exception:
		logger.warning("redis readiness check failed", exc_info=True)
		checks["redis"] = "unavailable"
	ready = all(value == "ok" for value in checks.values())
	status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE
	return JSONResponse(content={"status": "ok" if ready else "degraded", "checks": checks}, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	payload, content_type = obs_metrics.render_latest()
	return Response(content=payload, media_type=content_type)
