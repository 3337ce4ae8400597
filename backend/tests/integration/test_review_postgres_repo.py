from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Iterator

import asyncpg
import pytest
import pytest_asyncio

from chirisu.infra import postgres
from chirisu.infra.schema import apply_migrations
from chirisu.review.domain.cases_service import CaseService
from chirisu.review.domain.errors import AlreadyAssignedError, ApplyFailedError, DuplicateError
from chirisu.review.domain.kinds import CaseKind
from chirisu.review.domain.models import NewCase
from chirisu.review.domain.notifier import ReviewNotifier
from chirisu.review.domain.rbac import ReviewerContext
from chirisu.review.infra.notifications_repo import PostgresNotificationRepository
from chirisu.review.infra import postgres_repo
from chirisu.review.infra.postgres_repo import PostgresReviewRepository
from chirisu.review.infra.subject_resolver import PostgresSubjectResolver

pytestmark = pytest.mark.asyncio

AUTHOR = ReviewerContext("user-author", ("user",))
OWNER = ReviewerContext("user-owner", ("user",))
MOD_A = ReviewerContext("mod-1", ("moderator",))
MOD_B = ReviewerContext("mod-2", ("moderator",))

CATALOG_FIXTURE_SQL = """
CREATE TABLE anime (
    id BIGSERIAL PRIMARY KEY,
    title TEXT NOT NULL,
    episode_count INTEGER CHECK (episode_count BETWEEN 0 AND 5000),
    is_nsfw BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ,
    deleted_at TIMESTAMPTZ
);
CREATE TABLE users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    deleted_at TIMESTAMPTZ
);
CREATE TABLE comments (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    body TEXT NOT NULL,
    updated_at TIMESTAMPTZ,
    deleted_at TIMESTAMPTZ
);
INSERT INTO anime (id, title, episode_count) VALUES (42, 'Foo', 12);
INSERT INTO users (id, username) VALUES ('user-author', 'author'), ('user-owner', 'owner');
INSERT INTO comments (id, user_id, body) VALUES (501, 'user-owner', 'first!');
"""


@pytest.fixture(scope="module")
def postgres_container() -> Iterator["PostgresContainer"]:
    testcontainers = pytest.importorskip(
        "testcontainers.postgres",
        reason="testcontainers.postgres is required for integration tests",
    )
    PostgresContainer = testcontainers.PostgresContainer
    container = PostgresContainer("postgres:16-alpine")
    try:
        container.start()
    except Exception as exc:  # pragma: no cover - environment without docker
        pytest.skip(f"unable to start postgres container: {exc}")
    try:
        yield container
    finally:
        container.stop()


@pytest_asyncio.fixture(scope="function")
async def postgres_pool(postgres_container) -> AsyncIterator[asyncpg.Pool]:
    url = postgres_container.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    pool = await asyncpg.create_pool(dsn=url, min_size=1, max_size=4)
    async with pool.acquire() as conn:
        await conn.execute("DROP SCHEMA IF EXISTS public CASCADE")
        await conn.execute("CREATE SCHEMA public")
        await conn.execute("GRANT ALL ON SCHEMA public TO PUBLIC")
        await conn.execute(CATALOG_FIXTURE_SQL)
    await apply_migrations(pool)
    postgres.set_pool(pool)
    try:
        yield pool
    finally:
        postgres.set_pool(None)
        await pool.close()


@pytest.fixture
def pg_service(postgres_pool, clock, fake_redis) -> CaseService:
    return CaseService(
        repository=PostgresReviewRepository(postgres_pool),
        subjects=PostgresSubjectResolver(postgres_pool),
        notifier=ReviewNotifier(PostgresNotificationRepository(postgres_pool), redis=fake_redis),
        clock=clock,
    )


async def _submit(service: CaseService, changes: dict) -> str:
    case = await service.create_contribution(AUTHOR, subject_type="anime", subject_id=42, proposed_changes=changes)
    return case.case_id


async def test_migrations_are_recorded_once(postgres_pool) -> None:
    assert await apply_migrations(postgres_pool) == []
    versions = await postgres_pool.fetch("SELECT version FROM schema_migrations")
    assert [row["version"] for row in versions] == ["0001_review_cases"]


async def test_concurrent_claims_have_one_winner(pg_service) -> None:
    case_id = await _submit(pg_service, {"title": {"old": "Foo", "new": "Bar"}})

    results = await asyncio.gather(
        pg_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case_id),
        pg_service.claim_case(MOD_B, CaseKind.CONTRIBUTION, case_id),
        return_exceptions=True,
    )

    winners = [result for result in results if not isinstance(result, Exception)]
    assert len(winners) == 1
    assert sum(isinstance(result, AlreadyAssignedError) for result in results) == 1
    assert winners[0].status == "in_review"



async def test_claim_rolls_back_when_audit_insert_fails(pg_service, monkeypatch) -> None:
    case_id = await _submit(pg_service, {"title": {"old": "Foo", "new": "Bar"}})

    async def _failing_insert(*args, **kwargs):
        raise RuntimeError("audit insert failed")

    monkeypatch.setattr(postgres_repo, "_insert_audit", _failing_insert)

    with pytest.raises(RuntimeError):
        await pg_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case_id)

    case = await pg_service.repository.get_case(CaseKind.CONTRIBUTION, case_id)
    assert case is not None
    assert case.assigned_to is None
    assert case.status == "pending"


async def test_approval_updates_row_and_case_together(pg_service, postgres_pool) -> None:
    case_id = await _submit(pg_service, {"title": {"old": "Foo", "new": "Bar"}})

    resolved = await pg_service.resolve_case(MOD_A, CaseKind.CONTRIBUTION, case_id, status="approved")

    assert resolved.status == "approved"
    assert resolved.resolved_by == "mod-1"
    row = await postgres_pool.fetchrow("SELECT title, updated_at FROM anime WHERE id = 42")
    assert row["title"] == "Bar"
    assert row["updated_at"] is not None


async def test_rejected_write_rolls_back_everything(pg_service, postgres_pool) -> None:
    # Passes typed coercion but violates the table's own CHECK constraint
    case_id = await _submit(pg_service, {"title": {"new": "Bar"}, "episodeCount": {"new": 9999}})

    with pytest.raises(ApplyFailedError) as excinfo:
        await pg_service.resolve_case(MOD_A, CaseKind.CONTRIBUTION, case_id, status="approved")

    assert excinfo.value.code == "catalog_rejected"
    row = await postgres_pool.fetchrow("SELECT title, episode_count FROM anime WHERE id = 42")
    assert (row["title"], row["episode_count"]) == ("Foo", 12)
    case = await pg_service.repository.get_case(CaseKind.CONTRIBUTION, case_id)
    assert case is not None and case.status == "pending"
    audit_actions = [entry.action for entry in await pg_service.repository.list_audit(CaseKind.CONTRIBUTION, case_id)]
    assert "case.resolve" not in audit_actions


async def test_stale_claim_visible_to_other_moderator(pg_service, clock) -> None:
    case_id = await _submit(pg_service, {"title": {"new": "Bar"}})
    await pg_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case_id)

    clock.advance(days=14)
    assert (await pg_service.list_cases(MOD_B, CaseKind.CONTRIBUTION)).total == 0

    clock.advance(days=2)
    page = await pg_service.list_cases(MOD_B, CaseKind.CONTRIBUTION)
    assert [item.case_id for item in page.items] == [case_id]
    counts = await pg_service.count_open_cases(MOD_B)
    assert counts["content_contributions"] == 1


async def test_report_guards_and_soft_delete(pg_service, postgres_pool, clock) -> None:
    report = await pg_service.create_report(
        AUTHOR, subject_kind="comment", subject_id=501, reason="spam", description="Same link everywhere"
    )
    assert report.subject_owner_id == "user-owner"

    with pytest.raises(DuplicateError):
        await pg_service.repository.create_case(
            _new_report_like(report),
            clock.now,
        )

    resolved = await pg_service.resolve_case(
        MOD_A, CaseKind.COMMENT_REPORT, report.case_id, status="resolved", action_taken="delete_comment"
    )

    assert resolved.action_taken == "delete_comment"
    deleted_at = await postgres_pool.fetchval("SELECT deleted_at FROM comments WHERE id = 501")
    assert deleted_at is not None
    notifications = await postgres_pool.fetch(
        "SELECT user_id, type FROM review_notifications ORDER BY id"
    )
    assert [(row["user_id"], row["type"]) for row in notifications] == [
        ("user-author", "report.resolved"),
        ("user-owner", "report.subject_actioned"),
    ]


def _new_report_like(case):
    return NewCase(
        kind=case.kind,
        subject_type=case.subject_type,
        subject_id=case.subject_id,
        author_id=case.author_id,
        payload={"reason": "harassment", "description": "Reported twice on purpose"},
    )
