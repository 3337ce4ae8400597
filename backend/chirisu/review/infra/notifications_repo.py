"""Persistence for in-app review notifications."""

from __future__ import annotations

import json
from uuid import UUID

import asyncpg

from chirisu.review.domain.notifier import Notification


class PostgresNotificationRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def persist(self, notification: Notification) -> None:
        await self.pool.execute(
            """
            INSERT INTO review_notifications(user_id, type, kind, case_id, actor_id, payload, created_at)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7)
            """,
            notification.user_id,
            notification.type,
            notification.kind.value,
            UUID(notification.case_id),
            notification.actor_id,
            json.dumps(notification.payload, default=str),
            notification.created_at,
        )
