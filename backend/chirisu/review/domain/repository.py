"""Storage contract for review cases plus in-memory implementations."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import uuid4

from chirisu.review.domain.errors import (
    ApplyFailedError,
    DuplicateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from chirisu.review.domain.kinds import IN_REVIEW, PENDING, CaseKind, kind_config
from chirisu.review.domain.models import AuditDraft, AuditLogEntry, NewCase, Resolution, ReviewCase
from chirisu.review.domain.subjects import (
    SUBJECTS,
    SubjectLookup,
    SubjectType,
    parse_subject_id,
    parse_subject_type,
)
from chirisu.review.domain.visibility import VisibilityScope, is_visible


class ReviewRepository(Protocol):
    """Storage contract used by the case service."""

    async def create_case(
        self, new_case: NewCase, now: datetime, audit: Optional[AuditDraft] = None
    ) -> ReviewCase:
        """Insert a pending, unassigned case and its audit row. Raises DuplicateError for a repeated report."""
        ...

    async def get_case(self, kind: CaseKind, case_id: str) -> ReviewCase | None:
        ...

    async def find_report(
        self, kind: CaseKind, subject_type: str, subject_id: str, author_id: str
    ) -> ReviewCase | None:
        ...

    async def list_cases(
        self,
        kind: CaseKind,
        *,
        status: Optional[str],
        scope: Optional[VisibilityScope],
        author_id: Optional[str],
        limit: int,
        offset: int,
    ) -> tuple[list[ReviewCase], int]:
        ...

    async def count_open_cases(self, kind: CaseKind, scope: VisibilityScope) -> int:
        ...

    async def claim_case(
        self,
        kind: CaseKind,
        case_id: str,
        actor_id: str,
        now: datetime,
        stale_before: datetime,
        audit: Optional[AuditDraft] = None,
    ) -> ReviewCase | None:
        """Atomically take an open case that is unassigned or abandoned.

        The audit row commits with the assignment or not at all. Returns None
        when the conditional write matched nothing.
        """
        ...

    async def release_case(
        self,
        kind: CaseKind,
        case_id: str,
        actor_id: str,
        is_admin: bool,
        now: datetime,
        audit: Optional[AuditDraft] = None,
    ) -> ReviewCase | None:
        """Clear the assignment of an open case held by ``actor_id`` (any holder for admins).

        Returns None when the conditional write matched nothing.
        """
        ...

    async def resolve_case(self, resolution: Resolution) -> ReviewCase:
        """Commit a status transition, its catalog side effects and audit row as one unit."""
        ...

    async def list_audit(self, kind: CaseKind, case_id: str) -> list[AuditLogEntry]:
        ...


class InMemoryCatalog:
    """Catalog, comment, review and user rows for local development and tests."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[Any, dict[str, Any]]] = {}

    def add(self, subject_type: SubjectType | str, row_id: Any, **columns: Any) -> dict[str, Any]:
        parsed = parse_subject_type(subject_type)
        key = parse_subject_id(parsed, row_id)
        row = {"id": key, "deleted_at": None, "updated_at": None, **columns}
        self.tables.setdefault(SUBJECTS[parsed].table, {})[key] = row
        return row

    def get(self, subject_type: SubjectType | str, row_id: Any) -> dict[str, Any] | None:
        parsed = parse_subject_type(subject_type)
        row = self.tables.get(SUBJECTS[parsed].table, {}).get(parse_subject_id(parsed, row_id))
        return dict(row) if row is not None else None

    def _live_row(self, table: str, row_id: Any) -> dict[str, Any] | None:
        row = self.tables.get(table, {}).get(row_id)
        if row is None or row.get("deleted_at") is not None:
            return None
        return row

    async def lookup(self, subject_type: SubjectType, subject_id: str) -> Optional[SubjectLookup]:
        spec = SUBJECTS[subject_type]
        try:
            key = parse_subject_id(subject_type, subject_id)
        except ValidationError:
            return None
        row = self._live_row(spec.table, key)
        if row is None:
            return None
        owner = row.get(spec.owner_column) if spec.owner_column else None
        return SubjectLookup(subject_type, str(subject_id), str(owner) if owner is not None else None)


class InMemoryReviewRepository(ReviewRepository):
    """Lightweight in-memory repository for local development and tests."""

    def __init__(self, catalog: InMemoryCatalog | None = None) -> None:
        self.catalog = catalog or InMemoryCatalog()
        self.cases: dict[CaseKind, dict[str, ReviewCase]] = {kind: {} for kind in CaseKind}
        self.audit_log: list[AuditLogEntry] = []
        self._lock = asyncio.Lock()

    async def create_case(
        self, new_case: NewCase, now: datetime, audit: Optional[AuditDraft] = None
    ) -> ReviewCase:
        async with self._lock:
            if kind_config(new_case.kind).is_report and self._find_report(
                new_case.kind, new_case.subject_type, new_case.subject_id, new_case.author_id
            ):
                raise DuplicateError()
            case = ReviewCase(
                case_id=str(uuid4()),
                kind=new_case.kind,
                subject_type=new_case.subject_type,
                subject_id=new_case.subject_id,
                author_id=new_case.author_id,
                payload=dict(new_case.payload),
                status=PENDING,
                created_at=now,
                updated_at=now,
                subject_owner_id=new_case.subject_owner_id,
            )
            if audit is not None:
                self._write_audit(audit, new_case.kind, case.case_id, now)
            self.cases[new_case.kind][case.case_id] = case
            return replace(case)

    async def get_case(self, kind: CaseKind, case_id: str) -> ReviewCase | None:
        case = self.cases[kind].get(case_id)
        return replace(case) if case else None

    def _find_report(self, kind: CaseKind, subject_type: str, subject_id: str, author_id: str) -> ReviewCase | None:
        for case in self.cases[kind].values():
            if (case.subject_type, case.subject_id, case.author_id) == (subject_type, subject_id, author_id):
                return case
        return None

    async def find_report(
        self, kind: CaseKind, subject_type: str, subject_id: str, author_id: str
    ) -> ReviewCase | None:
        case = self._find_report(kind, subject_type, subject_id, author_id)
        return replace(case) if case else None

    async def list_cases(
        self,
        kind: CaseKind,
        *,
        status: Optional[str],
        scope: Optional[VisibilityScope],
        author_id: Optional[str],
        limit: int,
        offset: int,
    ) -> tuple[list[ReviewCase], int]:
        matches = [
            case
            for case in self.cases[kind].values()
            if (status is None or case.status == status)
            and (author_id is None or case.author_id == author_id)
            and (scope is None or is_visible(case, scope))
        ]
        matches.sort(key=lambda case: case.created_at, reverse=True)
        return [replace(case) for case in matches[offset : offset + limit]], len(matches)

    async def count_open_cases(self, kind: CaseKind, scope: VisibilityScope) -> int:
        open_statuses = kind_config(kind).open_statuses
        return sum(
            1 for case in self.cases[kind].values() if case.status in open_statuses and is_visible(case, scope)
        )

    async def claim_case(
        self,
        kind: CaseKind,
        case_id: str,
        actor_id: str,
        now: datetime,
        stale_before: datetime,
        audit: Optional[AuditDraft] = None,
    ) -> ReviewCase | None:
        async with self._lock:
            case = self.cases[kind].get(case_id)
            if case is None or kind_config(kind).is_terminal(case.status):
                return None
            if case.assigned_to is not None and (case.assigned_at is None or case.assigned_at >= stale_before):
                return None
            claimed = replace(
                case,
                assigned_to=actor_id,
                assigned_at=now,
                status=IN_REVIEW if case.status == PENDING else case.status,
                updated_at=now,
            )
            if audit is not None:
                self._write_audit(audit, kind, case_id, now)
            self.cases[kind][case_id] = claimed
            return replace(claimed)

    async def release_case(
        self,
        kind: CaseKind,
        case_id: str,
        actor_id: str,
        is_admin: bool,
        now: datetime,
        audit: Optional[AuditDraft] = None,
    ) -> ReviewCase | None:
        async with self._lock:
            case = self.cases[kind].get(case_id)
            if case is None or case.assigned_to is None or kind_config(kind).is_terminal(case.status):
                return None
            if not is_admin and case.assigned_to != actor_id:
                return None
            released = replace(
                case,
                assigned_to=None,
                assigned_at=None,
                status=PENDING if case.status == IN_REVIEW else case.status,
                updated_at=now,
            )
            if audit is not None:
                self._write_audit(audit, kind, case_id, now)
            self.cases[kind][case_id] = released
            return replace(released)

    async def resolve_case(self, resolution: Resolution) -> ReviewCase:
        async with self._lock:
            case = self.cases[resolution.kind].get(resolution.case_id)
            if case is None:
                raise NotFoundError()
            if case.status != resolution.expected_status or case.assigned_to != resolution.expected_assignee:
                raise InvalidTransitionError("case_changed")

            # Validate every side effect before mutating anything
            catalog_row: dict[str, Any] | None = None
            update = resolution.catalog_update
            if update is not None:
                current = self.catalog._live_row(update.table, update.row_id)
                if current is None:
                    raise ApplyFailedError(code="subject_not_found")
                catalog_row = {**current, **dict(update.assignments), "updated_at": resolution.now}
            deleted_row: dict[str, Any] | None = None
            if resolution.delete_subject is not None:
                table, row_id = resolution.delete_subject
                current = self.catalog._live_row(table, row_id)
                if current is not None:
                    deleted_row = {**current, "deleted_at": resolution.now}
            self._write_audit(
                AuditDraft(
                    resolution.actor_id,
                    "case.resolve" if resolution.terminal else "case.transition",
                    resolution.audit_meta,
                ),
                resolution.kind,
                resolution.case_id,
                resolution.now,
            )

            if update is not None and catalog_row is not None:
                self.catalog.tables[update.table][update.row_id] = catalog_row
            if deleted_row is not None and resolution.delete_subject is not None:
                table, row_id = resolution.delete_subject
                self.catalog.tables[table][row_id] = deleted_row
            case.status = resolution.status
            if resolution.notes is not None:
                case.resolution_notes = resolution.notes
            if resolution.terminal:
                case.resolved_by = resolution.actor_id
                case.resolved_at = resolution.now
                case.action_taken = resolution.action_taken
            case.updated_at = resolution.now
            return replace(case)

    def _write_audit(self, audit: AuditDraft, kind: CaseKind, case_id: str, now: datetime) -> AuditLogEntry:
        entry = AuditLogEntry(
            actor_id=audit.actor_id,
            action=audit.action,
            kind=kind,
            case_id=case_id,
            meta=dict(audit.meta),
            created_at=now,
        )
        self.audit_log.append(entry)
        return entry

    async def list_audit(self, kind: CaseKind, case_id: str) -> list[AuditLogEntry]:
        return [entry for entry in self.audit_log if entry.kind is kind and entry.case_id == case_id]
