"""Case queue endpoints for moderators and administrators."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from chirisu.obs.logging import log_context
from chirisu.review.domain.cases_service import CaseService
from chirisu.review.domain.models import AuditLogEntry, CasePage, ReviewCase
from chirisu.review.domain.rbac import ReviewerContext

from .deps import get_case_service_dep, get_reviewer

router = APIRouter(prefix="/api/review/v1/cases", tags=["review-cases"])


class CaseOut(BaseModel):
    case_id: str
    kind: str
    subject_type: str
    subject_id: str
    author_id: str
    status: str
    payload: dict[str, Any]
    assigned_to: str | None
    assigned_at: datetime | None
    resolved_by: str | None
    resolved_at: datetime | None
    resolution_notes: str | None
    action_taken: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, case: ReviewCase) -> "CaseOut":
        return cls(
            case_id=case.case_id,
            kind=case.kind.value,
            subject_type=case.subject_type,
            subject_id=case.subject_id,
            author_id=case.author_id,
            status=case.status,
            payload=dict(case.payload),
            assigned_to=case.assigned_to,
            assigned_at=case.assigned_at,
            resolved_by=case.resolved_by,
            resolved_at=case.resolved_at,
            resolution_notes=case.resolution_notes,
            action_taken=case.action_taken,
            created_at=case.created_at,
            updated_at=case.updated_at,
        )


class CasePageOut(BaseModel):
    items: list[CaseOut]
    total: int
    limit: int
    offset: int

    @classmethod
    def from_model(cls, page: CasePage) -> "CasePageOut":
        return cls(
            items=[CaseOut.from_model(case) for case in page.items],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
        )


class AuditOut(BaseModel):
    actor_id: str | None
    action: str
    meta: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_model(cls, entry: AuditLogEntry) -> "AuditOut":
        return cls(
            actor_id=entry.actor_id,
            action=entry.action,
            meta=dict(entry.meta),
            created_at=entry.created_at,
        )


class ResolveCaseIn(BaseModel):
    status: str = Field(..., min_length=1, max_length=32)
    notes: str | None = Field(default=None, max_length=2000)
    action_taken: str | None = Field(default=None, max_length=64)


@router.get("/counts", response_model=dict[str, int])
async def count_open_cases(
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> dict[str, int]:
    return await service.count_open_cases(reviewer)


@router.get("/{kind}", response_model=CasePageOut)
async def list_cases(
    kind: str,
    status: str | None = Query(default=None),
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CasePageOut:
    page = await service.list_cases(reviewer, kind, status=status, limit=limit, offset=offset)
    return CasePageOut.from_model(page)


@router.get("/{kind}/{case_id}", response_model=CaseOut)
async def get_case(
    kind: str,
    case_id: str,
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CaseOut:
    with log_context(case_id=case_id, case_kind=kind):
        return CaseOut.from_model(await service.get_case(reviewer, kind, case_id))


@router.get("/{kind}/{case_id}/audit", response_model=list[AuditOut])
async def get_case_audit(
    kind: str,
    case_id: str,
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> list[AuditOut]:
    entries = await service.list_case_audit(reviewer, kind, case_id)
    return [AuditOut.from_model(entry) for entry in entries]


@router.post("/{kind}/{case_id}/assign", response_model=CaseOut)
async def claim_case(
    kind: str,
    case_id: str,
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CaseOut:
    with log_context(case_id=case_id, case_kind=kind):
        return CaseOut.from_model(await service.claim_case(reviewer, kind, case_id))


@router.delete("/{kind}/{case_id}/assign", response_model=CaseOut)
async def release_case(
    kind: str,
    case_id: str,
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CaseOut:
    with log_context(case_id=case_id, case_kind=kind):
        return CaseOut.from_model(await service.release_case(reviewer, kind, case_id))


@router.post("/{kind}/{case_id}/resolve", response_model=CaseOut)
async def resolve_case(
    kind: str,
    case_id: str,
    payload: ResolveCaseIn,
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CaseOut:
    with log_context(case_id=case_id, case_kind=kind):
        case = await service.resolve_case(
            reviewer,
            kind,
            case_id,
            status=payload.status,
            notes=payload.notes,
            action_taken=payload.action_taken,
        )
    return CaseOut.from_model(case)
