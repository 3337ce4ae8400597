"""Fire-and-forget delivery of review events to users and the case event stream.

Delivery happens after the case write has committed. A failure here is logged
and counted but never propagates to the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence

from chirisu.obs import metrics as obs_metrics
from chirisu.review.domain.kinds import DISMISSED, NO_ACTION, RESOLVED, CaseKind, kind_config
from chirisu.review.domain.models import ReviewCase

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    user_id: str
    type: str
    kind: CaseKind
    case_id: str
    actor_id: Optional[str]
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationRepository(Protocol):
    async def persist(self, notification: Notification) -> None:
        ...


class InMemoryNotificationRepository(NotificationRepository):
    def __init__(self) -> None:
        self.items: list[Notification] = []

    async def persist(self, notification: Notification) -> None:
        self.items.append(notification)

    def for_user(self, user_id: str) -> list[Notification]:
        return [item for item in self.items if item.user_id == user_id]


def _type_prefix(kind: CaseKind) -> str:
    return "contribution" if kind is CaseKind.CONTRIBUTION else "report"


@dataclass
class ReviewNotifier:
    repository: NotificationRepository
    redis: Any = None
    stream: str = "review:case-events"
    stream_maxlen: int = 10_000
    staff_recipient_ids: Sequence[str] = ()

    async def case_created(self, case: ReviewCase) -> None:
        await self._publish("case.created", case, actor_id=case.author_id)
        payload = {
            "kind": case.kind.value,
            "subject_type": case.subject_type,
            "subject_id": case.subject_id,
        }
        for recipient in self.staff_recipient_ids:
            if recipient == case.author_id:
                continue
            await self._deliver(
                Notification(
                    user_id=recipient,
                    type=f"{_type_prefix(case.kind)}.submitted",
                    kind=case.kind,
                    case_id=case.case_id,
                    actor_id=case.author_id,
                    payload=payload,
                )
            )

    async def case_transitioned(self, case: ReviewCase, *, previous_status: str, actor_id: str) -> None:
        await self._publish("case.transitioned", case, actor_id=actor_id, previous_status=previous_status)
        payload = {
            "kind": case.kind.value,
            "status": case.status,
            "previous_status": previous_status,
            "subject_type": case.subject_type,
            "subject_id": case.subject_id,
            "notes": case.resolution_notes or "",
        }
        await self._deliver(
            Notification(
                user_id=case.author_id,
                type=f"{_type_prefix(case.kind)}.{case.status}",
                kind=case.kind,
                case_id=case.case_id,
                actor_id=actor_id,
                payload=payload,
            )
        )
        owner_type = self._subject_owner_type(case)
        if owner_type and case.subject_owner_id and case.subject_owner_id != case.author_id:
            await self._deliver(
                Notification(
                    user_id=case.subject_owner_id,
                    type=owner_type,
                    kind=case.kind,
                    case_id=case.case_id,
                    actor_id=actor_id,
                    payload={
                        "subject_type": case.subject_type,
                        "subject_id": case.subject_id,
                        "action_taken": case.action_taken or NO_ACTION,
                    },
                )
            )

    @staticmethod
    def _subject_owner_type(case: ReviewCase) -> Optional[str]:
        if not kind_config(case.kind).is_report:
            return None
        if case.status == DISMISSED:
            return "report.subject_cleared"
        if case.status == RESOLVED and case.action_taken not in (None, NO_ACTION):
            return "report.subject_actioned"
        return None

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self.repository.persist(notification)
        except Exception:  # noqa: BLE001 - notification failures should not block workflow
            obs_metrics.notification_failed("store")
            logger.exception(
                "failed to persist review notification",
                extra={
                    "case_id": notification.case_id,
                    "recipient": notification.user_id,
                    "notification_type": notification.type,
                },
            )

    async def _publish(self, event: str, case: ReviewCase, *, actor_id: str, **extra: Any) -> None:
        if self.redis is None:
            return
        fields: Mapping[str, Any] = {
            "event": event,
            "kind": case.kind.value,
            "case_id": case.case_id,
            "status": case.status,
            "actor_id": actor_id,
            "author_id": case.author_id,
            "assigned_to": case.assigned_to or "",
            "meta": json.dumps(extra, default=str),
        }
        try:
            await self.redis.xadd(self.stream, dict(fields), maxlen=self.stream_maxlen, approximate=True)
        except Exception:  # noqa: BLE001 - stream is best effort
            obs_metrics.notification_failed("stream")
            logger.exception("failed to publish review event", extra={"case_id": case.case_id, "event": event})
