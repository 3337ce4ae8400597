"""PostgreSQL-backed repository for review cases."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional
from uuid import UUID

import asyncpg

from chirisu.infra.soft_delete import soft_delete
from chirisu.review.domain.errors import (
    ApplyFailedError,
    DuplicateError,
    InvalidTransitionError,
    NotFoundError,
)
from chirisu.review.domain.kinds import IN_REVIEW, PENDING, CaseKind, kind_config
from chirisu.review.domain.models import (
    AuditDraft,
    AuditLogEntry,
    CatalogUpdate,
    NewCase,
    Resolution,
    ReviewCase,
)
from chirisu.review.domain.repository import ReviewRepository
from chirisu.review.domain.visibility import VisibilityScope, build_visibility_predicate

_COMMON_COLUMNS = (
    "id",
    "subject_type",
    "subject_id",
    "author_id",
    "subject_owner_id",
    "status",
    "assigned_to",
    "assigned_at",
    "resolved_by",
    "resolved_at",
    "resolution_notes",
    "action_taken",
    "created_at",
    "updated_at",
)
_CONTRIBUTION_COLUMNS = ("proposed_changes", "notes", "sources")
_REPORT_COLUMNS = ("reason", "description")


def _payload_columns(kind: CaseKind) -> tuple[str, ...]:
    return _CONTRIBUTION_COLUMNS if kind is CaseKind.CONTRIBUTION else _REPORT_COLUMNS


def _select_list(kind: CaseKind) -> str:
    return ", ".join(_COMMON_COLUMNS + _payload_columns(kind))


def _to_uuid(value: Any) -> UUID | None:
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def _json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class PostgresReviewRepository(ReviewRepository):
    """Persists review cases using asyncpg."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create_case(self, new_case: NewCase, now, audit: Optional[AuditDraft] = None) -> ReviewCase:
        config = kind_config(new_case.kind)
        payload_columns = _payload_columns(new_case.kind)
        values: list[Any] = [
            new_case.subject_type,
            new_case.subject_id,
            new_case.author_id,
            new_case.subject_owner_id,
            now,
        ]
        placeholders = ["$1", "$2", "$3", "$4", "$5", "$5"]
        for column in payload_columns:
            value = new_case.payload.get(column)
            if column == "proposed_changes":
                values.append(json.dumps(value))
                placeholders.append(f"${len(values)}::jsonb")
            elif column == "sources":
                values.append(list(value or []))
                placeholders.append(f"${len(values)}::text[]")
            else:
                values.append(value)
                placeholders.append(f"${len(values)}")
        query = f"""
        INSERT INTO {config.table}
            (subject_type, subject_id, author_id, subject_owner_id, created_at, updated_at, {", ".join(payload_columns)})
        VALUES ({", ".join(placeholders)})
        RETURNING {_select_list(new_case.kind)}
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    record = await conn.fetchrow(query, *values)
                    assert record is not None
                    if audit is not None:
                        await _insert_audit(conn, new_case.kind, record["id"], audit, now)
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateError() from exc
        return _case_from_record(new_case.kind, record)

    async def get_case(self, kind: CaseKind, case_id: str) -> ReviewCase | None:
        case_uuid = _to_uuid(case_id)
        if case_uuid is None:
            return None
        query = f"SELECT {_select_list(kind)} FROM {kind_config(kind).table} WHERE id = $1"
        record = await self.pool.fetchrow(query, case_uuid)
        if record is None:
            return None
        return _case_from_record(kind, record)

    async def find_report(
        self, kind: CaseKind, subject_type: str, subject_id: str, author_id: str
    ) -> ReviewCase | None:
        query = f"""
        SELECT {_select_list(kind)}
        FROM {kind_config(kind).table}
        WHERE subject_type = $1 AND subject_id = $2 AND author_id = $3
        LIMIT 1
        """
        record = await self.pool.fetchrow(query, subject_type, subject_id, author_id)
        if record is None:
            return None
        return _case_from_record(kind, record)

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
        config = kind_config(kind)
        params: list[Any] = []
        conditions: list[str] = []
        if status is not None:
            params.append(status)
            conditions.append(f"status = ${len(params)}")
        if author_id is not None:
            params.append(author_id)
            conditions.append(f"author_id = ${len(params)}")
        if scope is not None:
            conditions.append(build_visibility_predicate(scope, params, config.terminal))
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        total = await self.pool.fetchval(f"SELECT COUNT(*) FROM {config.table} {where_clause}", *params)
        params.append(limit)
        limit_ref = f"${len(params)}"
        params.append(offset)
        offset_ref = f"${len(params)}"
        query = f"""
        SELECT {_select_list(kind)}
        FROM {config.table}
        {where_clause}
        ORDER BY created_at DESC, id
        LIMIT {limit_ref} OFFSET {offset_ref}
        """
        records = await self.pool.fetch(query, *params)
        return [_case_from_record(kind, record) for record in records], int(total or 0)

    async def count_open_cases(self, kind: CaseKind, scope: VisibilityScope) -> int:
        config = kind_config(kind)
        params: list[Any] = [sorted(config.open_statuses)]
        visibility = build_visibility_predicate(scope, params, config.terminal)
        query = f"SELECT COUNT(*) FROM {config.table} WHERE status = ANY($1::text[]) AND {visibility}"
        return int(await self.pool.fetchval(query, *params) or 0)

    async def claim_case(
        self,
        kind: CaseKind,
        case_id: str,
        actor_id: str,
        now,
        stale_before,
        audit: Optional[AuditDraft] = None,
    ) -> ReviewCase | None:
        case_uuid = _to_uuid(case_id)
        if case_uuid is None:
            return None
        config = kind_config(kind)
        # Single conditional write: two concurrent claims cannot both match
        query = f"""
        UPDATE {config.table}
        SET assigned_to = $2,
            assigned_at = $3,
            status = CASE WHEN status = '{PENDING}' THEN '{IN_REVIEW}' ELSE status END,
            updated_at = $3
        WHERE id = $1
          AND status <> ALL($5::text[])
          AND (assigned_to IS NULL OR assigned_at < $4)
        RETURNING {_select_list(kind)}
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                record = await conn.fetchrow(query, case_uuid, actor_id, now, stale_before, sorted(config.terminal))
                if record is None:
                    return None
                if audit is not None:
                    await _insert_audit(conn, kind, case_uuid, audit, now)
        return _case_from_record(kind, record)

    async def release_case(
        self,
        kind: CaseKind,
        case_id: str,
        actor_id: str,
        is_admin: bool,
        now,
        audit: Optional[AuditDraft] = None,
    ) -> ReviewCase | None:
        case_uuid = _to_uuid(case_id)
        if case_uuid is None:
            return None
        config = kind_config(kind)
        query = f"""
        UPDATE {config.table}
        SET assigned_to = NULL,
            assigned_at = NULL,
            status = CASE WHEN status = '{IN_REVIEW}' THEN '{PENDING}' ELSE status END,
            updated_at = $3
        WHERE id = $1
          AND assigned_to IS NOT NULL
          AND status <> ALL($4::text[])
          AND ($5::boolean OR assigned_to = $2)
        RETURNING {_select_list(kind)}
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                record = await conn.fetchrow(query, case_uuid, actor_id, now, sorted(config.terminal), is_admin)
                if record is None:
                    return None
                if audit is not None:
                    await _insert_audit(conn, kind, case_uuid, audit, now)
        return _case_from_record(kind, record)

    async def resolve_case(self, resolution: Resolution) -> ReviewCase:
        case_uuid = _to_uuid(resolution.case_id)
        if case_uuid is None:
            raise NotFoundError()
        kind = resolution.kind
        table = kind_config(kind).table
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                record = await conn.fetchrow(
                    f"SELECT {_select_list(kind)} FROM {table} WHERE id = $1 FOR UPDATE",
                    case_uuid,
                )
                if record is None:
                    raise NotFoundError()
                current = _case_from_record(kind, record)
                if current.status != resolution.expected_status or current.assigned_to != resolution.expected_assignee:
                    raise InvalidTransitionError("case_changed")
                if resolution.catalog_update is not None:
                    await _apply_catalog_update(conn, resolution.catalog_update, resolution.now)
                if resolution.delete_subject is not None:
                    subject_table, row_id = resolution.delete_subject
                    await soft_delete(conn, subject_table, "id", row_id)
                record = await conn.fetchrow(
                    f"""
                    UPDATE {table}
                    SET status = $2,
                        resolution_notes = COALESCE($3, resolution_notes),
                        resolved_by = CASE WHEN $4::boolean THEN $5 ELSE resolved_by END,
                        resolved_at = CASE WHEN $4::boolean THEN $6 ELSE resolved_at END,
                        action_taken = CASE WHEN $4::boolean THEN $7 ELSE action_taken END,
                        updated_at = $6
                    WHERE id = $1
                    RETURNING {_select_list(kind)}
                    """,
                    case_uuid,
                    resolution.status,
                    resolution.notes,
                    resolution.terminal,
                    resolution.actor_id,
                    resolution.now,
                    resolution.action_taken,
                )
                assert record is not None
                await _insert_audit(
                    conn,
                    kind,
                    case_uuid,
                    AuditDraft(
                        resolution.actor_id,
                        "case.resolve" if resolution.terminal else "case.transition",
                        resolution.audit_meta,
                    ),
                    resolution.now,
                )
        return _case_from_record(kind, record)

    async def list_audit(self, kind: CaseKind, case_id: str) -> list[AuditLogEntry]:
        case_uuid = _to_uuid(case_id)
        if case_uuid is None:
            return []
        query = """
        SELECT actor_id, action, kind, case_id, meta, created_at
        FROM review_audit
        WHERE kind = $1 AND case_id = $2
        ORDER BY created_at ASC, id ASC
        """
        records = await self.pool.fetch(query, kind.value, case_uuid)
        return [_audit_from_record(record) for record in records]


async def _insert_audit(conn: asyncpg.Connection, kind: CaseKind, case_uuid: UUID, audit: AuditDraft, now) -> None:
    await conn.execute(
        """
        INSERT INTO review_audit(actor_id, action, kind, case_id, meta, created_at)
        VALUES ($1, $2, $3, $4, $5::jsonb, $6)
        """,
        audit.actor_id,
        audit.action,
        kind.value,
        case_uuid,
        json.dumps(dict(audit.meta), default=str),
        now,
    )


async def _apply_catalog_update(conn: asyncpg.Connection, update: CatalogUpdate, now) -> None:
    """Write typed column values to the catalog row inside the caller's transaction."""
    params: list[Any] = []
    assignments: list[str] = []
    for column, value in update.assignments:
        params.append(value)
        assignments.append(f"{column} = ${len(params)}")
    params.append(now)
    assignments.append(f"updated_at = ${len(params)}")
    params.append(update.row_id)
    query = f"UPDATE {update.table} SET {', '.join(assignments)} WHERE id = ${len(params)} AND deleted_at IS NULL"
    try:
        status = await conn.execute(query, *params)
    except (asyncpg.DataError, asyncpg.IntegrityConstraintViolationError) as exc:
        raise ApplyFailedError(code="catalog_rejected") from exc
    if not status.endswith(" 1"):
        raise ApplyFailedError(code="subject_not_found")


def _case_from_record(kind: CaseKind, record: Mapping[str, Any]) -> ReviewCase:
    if kind is CaseKind.CONTRIBUTION:
        payload: dict[str, Any] = {
            "proposed_changes": _json(record["proposed_changes"]) or {},
            "notes": record["notes"],
            "sources": list(record["sources"] or []),
        }
    else:
        payload = {"reason": record["reason"], "description": record["description"]}
    return ReviewCase(
        case_id=str(record["id"]),
        kind=kind,
        subject_type=record["subject_type"],
        subject_id=record["subject_id"],
        author_id=record["author_id"],
        payload=payload,
        status=record["status"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
        assigned_to=record["assigned_to"],
        assigned_at=record["assigned_at"],
        resolved_by=record["resolved_by"],
        resolved_at=record["resolved_at"],
        resolution_notes=record["resolution_notes"],
        action_taken=record["action_taken"],
        subject_owner_id=record["subject_owner_id"],
    )


def _audit_from_record(record: Mapping[str, Any]) -> AuditLogEntry:
    return AuditLogEntry(
        actor_id=record["actor_id"],
        action=record["action"],
        kind=CaseKind(record["kind"]),
        case_id=str(record["case_id"]),
        meta=_json(record["meta"]) or {},
        created_at=record["created_at"],
    )
