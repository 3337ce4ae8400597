import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-review-suite")

from chirisu.infra import postgres
from chirisu.main import app
from chirisu.review.domain import container
from chirisu.review.domain.repository import InMemoryCatalog
from chirisu.settings import settings


if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		pass


MODERATOR_ID = "mod-1"
OTHER_MODERATOR_ID = "mod-2"
ADMIN_ID = "admin-1"
AUTHOR_ID = "user-author"
OWNER_ID = "user-owner"


class FrozenClock:
	"""Deterministic clock the case service reads instead of the wall clock."""

	def __init__(self, start: datetime | None = None) -> None:
		self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **delta) -> datetime:
		self.now = self.now + timedelta(**delta)
		return self.now


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from chirisu.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id/X-User-Roles headers, which are only accepted in dev mode."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def clock() -> FrozenClock:
	return FrozenClock()


@pytest.fixture
def catalog() -> InMemoryCatalog:
	catalog = InMemoryCatalog()
	catalog.add("anime", 42, title="Foo", episode_count=12, is_nsfw=False)
	catalog.add("manga", 7, title="Moon Ledger", chapters=120)
	catalog.add("comment", 501, user_id=OWNER_ID, body="first!")
	catalog.add("review", 77, user_id=OWNER_ID, body="A slow start but worth it")
	catalog.add("user", OWNER_ID, username="owner")
	catalog.add("user", AUTHOR_ID, username="author")
	return catalog


@pytest.fixture(autouse=True)
def case_service(catalog, clock):
	return container.configure_in_memory(catalog=catalog, staff_ids=(MODERATOR_ID,), clock=clock)


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
