"""Lightweight service container shared by review modules."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

import asyncpg

from chirisu.infra.redis import RedisProxy, redis_client
from chirisu.infra.soft_delete import now_utc
from chirisu.review.domain.cases_service import CaseService
from chirisu.review.domain.notifier import (
    InMemoryNotificationRepository,
    NotificationRepository,
    ReviewNotifier,
)
from chirisu.review.domain.repository import InMemoryCatalog, InMemoryReviewRepository, ReviewRepository
from chirisu.review.domain.subjects import SubjectResolver
from chirisu.settings import settings

_catalog = InMemoryCatalog()
_repository: ReviewRepository = InMemoryReviewRepository(_catalog)
_subjects: SubjectResolver = _catalog
_notifications: NotificationRepository = InMemoryNotificationRepository()
_redis: Any = redis_client
_staff_ids: tuple[str, ...] = tuple(settings.review_staff_ids)
_stale_after: timedelta = settings.review_stale_after()
_clock: Callable[[], datetime] = now_utc


def _build_service() -> CaseService:
    notifier = ReviewNotifier(
        repository=_notifications,
        redis=_redis,
        stream=settings.review_events_stream,
        staff_recipient_ids=_staff_ids,
    )
    return CaseService(
        repository=_repository,
        subjects=_subjects,
        notifier=notifier,
        stale_after=_stale_after,
        min_report_description=settings.review_report_min_description,
        max_page_size=settings.review_page_max,
        clock=_clock,
    )


_case_service = _build_service()


def configure(
    *,
    repository: Optional[ReviewRepository] = None,
    subjects: Optional[SubjectResolver] = None,
    notifications: Optional[NotificationRepository] = None,
    redis: Optional[Any] = None,
    staff_ids: Optional[Sequence[str]] = None,
    stale_after: Optional[timedelta] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CaseService:
    """Swap collaborators and rebuild the shared case service."""
    global _repository, _subjects, _notifications, _redis, _staff_ids, _stale_after, _clock, _case_service
    if repository is not None:
        _repository = repository
    if subjects is not None:
        _subjects = subjects
    if notifications is not None:
        _notifications = notifications
    if redis is not None:
        _redis = redis
    if staff_ids is not None:
        _staff_ids = tuple(staff_ids)
    if stale_after is not None:
        _stale_after = stale_after
    if clock is not None:
        _clock = clock
    _case_service = _build_service()
    return _case_service


def configure_in_memory(
    *,
    catalog: Optional[InMemoryCatalog] = None,
    staff_ids: Sequence[str] = (),
    stale_after: Optional[timedelta] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CaseService:
    """Reset to fresh in-memory stores, for local runs and tests."""
    global _catalog
    _catalog = catalog or InMemoryCatalog()
    return configure(
        repository=InMemoryReviewRepository(_catalog),
        subjects=_catalog,
        notifications=InMemoryNotificationRepository(),
        staff_ids=staff_ids,
        stale_after=stale_after or settings.review_stale_after(),
        clock=clock or now_utc,
    )


def configure_postgres(pool: asyncpg.Pool, redis: RedisProxy) -> CaseService:
    from chirisu.review.infra.notifications_repo import PostgresNotificationRepository
    from chirisu.review.infra.postgres_repo import PostgresReviewRepository
    from chirisu.review.infra.subject_resolver import PostgresSubjectResolver

    return configure(
        repository=PostgresReviewRepository(pool),
        subjects=PostgresSubjectResolver(pool),
        notifications=PostgresNotificationRepository(pool),
        redis=redis,
    )


def get_case_service() -> CaseService:
    return _case_service


def get_catalog() -> InMemoryCatalog:
    return _catalog


def get_notifications() -> NotificationRepository:
    return _notifications
