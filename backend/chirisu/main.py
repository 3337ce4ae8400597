"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chirisu.api import ops
from chirisu.api.errors import install_error_handlers
from chirisu.api.middleware_request_id import RequestIdMiddleware
from chirisu.infra import postgres
from chirisu.infra.redis import redis_client
from chirisu.obs import init as obs_init
from chirisu.obs.logging import get_logger
from chirisu.review import configure_postgres as configure_review
from chirisu.review import router as review_router
from chirisu.settings import settings

logger = get_logger("chirisu.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	if pool is not None:
		configure_review(pool, redis_client)
		logger.info("review service bound to postgres", extra={"environment": settings.environment})
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="Chirisu Review API", lifespan=lifespan)

install_error_handlers(app)

if settings.cors_allow_origins:
	allow_origins = list(settings.cors_allow_origins)
elif settings.is_dev():
	allow_origins = [
		"http://localhost:3000",
		"http://127.0.0.1:3000",
		"http://localhost:5173",
		"http://127.0.0.1:5173",
	]
else:
	allow_origins = []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)
app.add_middleware(RequestIdMiddleware)

app.include_router(ops.router)
app.include_router(review_router, tags=["review"])
