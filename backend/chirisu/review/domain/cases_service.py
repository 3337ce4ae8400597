"""Case workflow orchestration: creation guards, claiming, releasing and resolution."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence

from chirisu.infra.soft_delete import now_utc
from chirisu.obs import metrics as obs_metrics
from chirisu.review.domain.change_applier import build_catalog_update, normalize_proposed_changes
from chirisu.review.domain.errors import (
    AlreadyAssignedError,
    ApplyFailedError,
    AuthenticationError,
    DuplicateError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    SelfReportError,
    ValidationError,
)
from chirisu.review.domain.kinds import (
    APPROVED,
    DELETE_COMMENT,
    DELETE_REVIEW,
    CaseKind,
    KindConfig,
    kind_config,
    parse_kind,
)
from chirisu.review.domain.models import AuditDraft, AuditLogEntry, CasePage, NewCase, Resolution, ReviewCase
from chirisu.review.domain.notifier import ReviewNotifier
from chirisu.review.domain.rbac import ReviewerContext
from chirisu.review.domain.repository import ReviewRepository
from chirisu.review.domain.subjects import (
    SUBJECTS,
    SubjectResolver,
    SubjectType,
    parse_subject_id,
    parse_subject_type,
    report_kind_for,
)
from chirisu.review.domain.visibility import VisibilityScope, can_transition, is_visible, stale_cutoff

logger = logging.getLogger(__name__)

_DELETE_ACTIONS = {DELETE_COMMENT: SubjectType.COMMENT, DELETE_REVIEW: SubjectType.REVIEW}


def _require_identity(ctx: Optional[ReviewerContext]) -> ReviewerContext:
    if ctx is None or not ctx.actor_id:
        raise AuthenticationError()
    return ctx


def _require_staff(ctx: Optional[ReviewerContext]) -> ReviewerContext:
    ctx = _require_identity(ctx)
    if not ctx.is_staff:
        raise NotAuthorizedError("staff_role_required")
    return ctx


def _observe_write(start: float) -> None:
    obs_metrics.REVIEW_CASE_WRITE_LATENCY_SECONDS.observe(time.perf_counter() - start)


def _status_filter(config: KindConfig, status: Optional[str]) -> Optional[str]:
    if status is None or status.strip().lower() in ("", "all"):
        return None
    try:
        return config.normalize_status(status)
    except InvalidTransitionError:
        raise ValidationError("unknown_status", detail=f"{status!r} is not a {config.kind.value} status") from None


@dataclass
class CaseService:
    repository: ReviewRepository
    subjects: SubjectResolver
    notifier: ReviewNotifier
    stale_after: timedelta = timedelta(days=15)
    min_report_description: int = 10
    default_page_size: int = 50
    max_page_size: int = 100
    clock: Callable[[], datetime] = now_utc

    def _scope(self, ctx: ReviewerContext, now: datetime) -> VisibilityScope:
        return VisibilityScope(
            viewer_id=ctx.actor_id,
            is_admin=ctx.is_admin,
            stale_before=stale_cutoff(now, self.stale_after),
        )

    def _page(self, limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
        size = self.default_page_size if limit is None else int(limit)
        start = 0 if offset is None else int(offset)
        if size < 1 or start < 0:
            raise ValidationError("invalid_pagination")
        return min(size, self.max_page_size), start

    # Listing

    async def list_cases(
        self,
        ctx: ReviewerContext,
        kind: str | CaseKind,
        *,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> CasePage:
        """Staff see the visibility-scoped queue; everyone else sees only their own cases."""
        ctx = _require_identity(ctx)
        case_kind = parse_kind(kind)
        status_value = _status_filter(kind_config(case_kind), status)
        size, start = self._page(limit, offset)
        if not ctx.is_staff:
            return await self._list_authored(ctx, case_kind, status_value, size, start)
        started = time.perf_counter()
        items, total = await self.repository.list_cases(
            case_kind,
            status=status_value,
            scope=self._scope(ctx, self.clock()),
            author_id=None,
            limit=size,
            offset=start,
        )
        obs_metrics.REVIEW_CASE_LIST_LATENCY_MS.observe((time.perf_counter() - started) * 1000)
        return CasePage(items=items, total=total, limit=size, offset=start)

    async def list_my_cases(
        self,
        ctx: ReviewerContext,
        kind: str | CaseKind,
        *,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> CasePage:
        ctx = _require_identity(ctx)
        case_kind = parse_kind(kind)
        size, start = self._page(limit, offset)
        return await self._list_authored(ctx, case_kind, _status_filter(kind_config(case_kind), status), size, start)

    async def _list_authored(
        self, ctx: ReviewerContext, kind: CaseKind, status: Optional[str], limit: int, offset: int
    ) -> CasePage:
        items, total = await self.repository.list_cases(
            kind, status=status, scope=None, author_id=ctx.actor_id, limit=limit, offset=offset
        )
        return CasePage(items=items, total=total, limit=limit, offset=offset)

    async def get_case(self, ctx: ReviewerContext, kind: str | CaseKind, case_id: str) -> ReviewCase:
        ctx = _require_identity(ctx)
        case = await self.repository.get_case(parse_kind(kind), case_id)
        if case is None:
            raise NotFoundError()
        if case.author_id == ctx.actor_id:
            return case
        if ctx.is_staff and is_visible(case, self._scope(ctx, self.clock())):
            return case
        raise NotFoundError()

    async def list_case_audit(self, ctx: ReviewerContext, kind: str | CaseKind, case_id: str) -> list[AuditLogEntry]:
        ctx = _require_staff(ctx)
        case = await self.get_case(ctx, kind, case_id)
        return await self.repository.list_audit(case.kind, case.case_id)

    async def count_open_cases(self, ctx: ReviewerContext) -> dict[str, int]:
        ctx = _require_staff(ctx)
        scope = self._scope(ctx, self.clock())
        counts: dict[str, int] = {}
        for kind in CaseKind:
            counts[kind.value] = await self.repository.count_open_cases(kind, scope)
        return counts

    # Creation

    async def create_contribution(
        self,
        ctx: ReviewerContext,
        *,
        subject_type: str,
        subject_id: Any,
        proposed_changes: Mapping[str, Any],
        notes: Optional[str] = None,
        sources: Optional[Sequence[str]] = None,
    ) -> ReviewCase:
        ctx = _require_identity(ctx)
        parsed_type = parse_subject_type(subject_type)
        changes = normalize_proposed_changes(parsed_type, proposed_changes)
        canonical_id = str(parse_subject_id(parsed_type, subject_id))
        subject = await self.subjects.lookup(parsed_type, canonical_id)
        if subject is None:
            raise NotFoundError("subject_not_found")
        start = time.perf_counter()
        case = await self.repository.create_case(
            NewCase(
                kind=CaseKind.CONTRIBUTION,
                subject_type=parsed_type.value,
                subject_id=canonical_id,
                author_id=ctx.actor_id,
                payload={
                    "proposed_changes": changes,
                    "notes": (notes or "").strip() or None,
                    "sources": [str(item).strip() for item in (sources or ()) if str(item).strip()],
                },
            ),
            self.clock(),
            AuditDraft(
                ctx.actor_id,
                "contribution.create",
                {"subject_type": parsed_type.value, "subject_id": canonical_id, "fields": sorted(changes)},
            ),
        )
        _observe_write(start)
        obs_metrics.case_created(case.kind.value)
        logger.info(
            "contribution submitted",
            extra={"case_id": case.case_id, "subject_type": case.subject_type, "subject_id": case.subject_id},
        )
        await self.notifier.case_created(case)
        return case

    async def create_report(
        self,
        ctx: ReviewerContext,
        *,
        subject_kind: str,
        subject_id: Any,
        reason: str,
        description: Optional[str],
    ) -> ReviewCase:
        ctx = _require_identity(ctx)
        parsed_type = parse_subject_type(subject_kind)
        kind = report_kind_for(parsed_type)
        config = kind_config(kind)
        canonical_id = str(parse_subject_id(parsed_type, subject_id))
        reason_code = (reason or "").strip().lower()
        if reason_code not in config.reasons:
            raise ValidationError("unknown_reason", detail=f"{reason!r} is not a {kind.value} reason")
        text = (description or "").strip()
        if len(text) < self.min_report_description:
            raise ValidationError(
                "description_too_short",
                detail=f"description needs at least {self.min_report_description} characters",
            )
        subject = await self.subjects.lookup(parsed_type, canonical_id)
        if subject is None:
            raise NotFoundError("subject_not_found")
        if subject.owner_id is not None and subject.owner_id == ctx.actor_id:
            obs_metrics.report_rejected(kind.value, "self_report")
            raise SelfReportError()
        if await self.repository.find_report(kind, parsed_type.value, canonical_id, ctx.actor_id):
            obs_metrics.report_rejected(kind.value, "duplicate")
            raise DuplicateError()
        start = time.perf_counter()
        try:
            case = await self.repository.create_case(
                NewCase(
                    kind=kind,
                    subject_type=parsed_type.value,
                    subject_id=canonical_id,
                    author_id=ctx.actor_id,
                    payload={"reason": reason_code, "description": text},
                    subject_owner_id=subject.owner_id,
                ),
                self.clock(),
                AuditDraft(
                    ctx.actor_id,
                    "report.create",
                    {"subject_type": parsed_type.value, "subject_id": canonical_id, "reason": reason_code},
                ),
            )
        except DuplicateError:
            obs_metrics.report_rejected(kind.value, "duplicate")
            raise
        _observe_write(start)
        obs_metrics.case_created(kind.value)
        logger.info(
            "report submitted",
            extra={"case_id": case.case_id, "kind": kind.value, "subject_id": case.subject_id},
        )
        await self.notifier.case_created(case)
        return case

    # Assignment

    async def claim_case(self, ctx: ReviewerContext, kind: str | CaseKind, case_id: str) -> ReviewCase:
        ctx = _require_staff(ctx)
        case_kind = parse_kind(kind)
        config = kind_config(case_kind)
        before = await self.repository.get_case(case_kind, case_id)
        if before is None:
            raise NotFoundError()
        now = self.clock()
        previous_holder = before.assigned_to if before.assigned_to != ctx.actor_id else None
        start = time.perf_counter()
        claimed = await self.repository.claim_case(
            case_kind,
            case_id,
            ctx.actor_id,
            now,
            stale_cutoff(now, self.stale_after),
            AuditDraft(ctx.actor_id, "case.claim", {"previous_assignee": previous_holder or ""}),
        )
        _observe_write(start)
        if claimed is None:
            current = await self.repository.get_case(case_kind, case_id)
            if current is None:
                raise NotFoundError()
            if config.is_terminal(current.status):
                raise InvalidTransitionError("case_closed")
            if current.assigned_to == ctx.actor_id:
                return current
            if current.assigned_to is None:
                # Released between the write and the re-read; the caller may retry
                raise InvalidTransitionError("case_changed")
            obs_metrics.claim_conflict(case_kind.value)
            raise AlreadyAssignedError(current.assigned_to)
        obs_metrics.case_transition(case_kind.value, "claimed")
        logger.info(
            "case claimed",
            extra={"case_id": case_id, "kind": case_kind.value, "previous_assignee": previous_holder},
        )
        if claimed.status != before.status:
            await self.notifier.case_transitioned(claimed, previous_status=before.status, actor_id=ctx.actor_id)
        return claimed

    async def release_case(self, ctx: ReviewerContext, kind: str | CaseKind, case_id: str) -> ReviewCase:
        ctx = _require_identity(ctx)
        case_kind = parse_kind(kind)
        before = await self.repository.get_case(case_kind, case_id)
        if before is None:
            raise NotFoundError()
        if not ctx.is_admin and before.assigned_to != ctx.actor_id:
            raise NotAuthorizedError("not_assignee")
        start = time.perf_counter()
        released = await self.repository.release_case(
            case_kind,
            case_id,
            ctx.actor_id,
            ctx.is_admin,
            self.clock(),
            AuditDraft(ctx.actor_id, "case.release", {"previous_assignee": before.assigned_to or ""}),
        )
        _observe_write(start)
        if released is None:
            current = await self.repository.get_case(case_kind, case_id)
            if current is None:
                raise NotFoundError()
            if not ctx.is_admin and current.assigned_to not in (None, ctx.actor_id):
                raise NotAuthorizedError("not_assignee")
            # Closed or already unassigned: nothing to release
            return current
        obs_metrics.case_transition(case_kind.value, "released")
        logger.info("case released", extra={"case_id": case_id, "kind": case_kind.value})
        if released.status != before.status:
            await self.notifier.case_transitioned(released, previous_status=before.status, actor_id=ctx.actor_id)
        return released

    # Resolution

    async def resolve_case(
        self,
        ctx: ReviewerContext,
        kind: str | CaseKind,
        case_id: str,
        *,
        status: str,
        notes: Optional[str] = None,
        action_taken: Optional[str] = None,
    ) -> ReviewCase:
        ctx = _require_staff(ctx)
        case_kind = parse_kind(kind)
        config = kind_config(case_kind)
        case = await self.repository.get_case(case_kind, case_id)
        if case is None:
            raise NotFoundError()
        now = self.clock()
        if config.is_terminal(case.status):
            raise InvalidTransitionError("case_closed")
        if not can_transition(case, self._scope(ctx, now)):
            raise NotAuthorizedError("case_assigned_to_other")
        target = config.normalize_status(status)
        terminal = config.is_terminal(target)
        action = config.normalize_action(action_taken, target)
        if action is not None and not terminal:
            raise ValidationError("action_requires_resolution")

        text = (notes or "").strip()
        if terminal and not text:
            text = config.default_note(target, action)

        catalog_update = None
        if case_kind is CaseKind.CONTRIBUTION and target == APPROVED:
            try:
                catalog_update = build_catalog_update(
                    case.subject_type, case.subject_id, case.payload.get("proposed_changes") or {}
                )
            except ApplyFailedError:
                obs_metrics.apply_failed(case.subject_type)
                raise

        delete_subject = None
        if action in _DELETE_ACTIONS:
            subject_type = _DELETE_ACTIONS[action]
            delete_subject = (SUBJECTS[subject_type].table, parse_subject_id(subject_type, case.subject_id))

        resolution = Resolution(
            kind=case_kind,
            case_id=case.case_id,
            actor_id=ctx.actor_id,
            status=target,
            terminal=terminal,
            now=now,
            expected_status=case.status,
            expected_assignee=case.assigned_to,
            notes=text or None,
            action_taken=action,
            catalog_update=catalog_update,
            delete_subject=delete_subject,
            audit_meta={
                "from": case.status,
                "to": target,
                "action_taken": action or "",
                "fields": catalog_update.columns() if catalog_update else [],
            },
        )
        start = time.perf_counter()
        try:
            updated = await self.repository.resolve_case(resolution)
        except ApplyFailedError:
            obs_metrics.apply_failed(case.subject_type)
            logger.warning(
                "approved contribution could not be applied",
                extra={"case_id": case.case_id, "subject_type": case.subject_type, "subject_id": case.subject_id},
            )
            raise
        _observe_write(start)
        obs_metrics.case_transition(case_kind.value, target)
        logger.info(
            "case transitioned",
            extra={"case_id": case.case_id, "kind": case_kind.value, "from_status": case.status, "to_status": target},
        )
        await self.notifier.case_transitioned(updated, previous_status=case.status, actor_id=ctx.actor_id)
        return updated
