"""Catalog edit submissions."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from chirisu.review.domain.cases_service import CaseService
from chirisu.review.domain.rbac import ReviewerContext

from .cases import CaseOut
from .deps import get_case_service_dep, get_reviewer

router = APIRouter(prefix="/api/review/v1/contributions", tags=["review-contributions"])


class ContributionIn(BaseModel):
    subject_type: str
    subject_id: str | int
    proposed_changes: dict[str, Any]
    notes: str | None = Field(default=None, max_length=2000)
    sources: list[str] = Field(default_factory=list, max_length=20)


@router.post("", response_model=CaseOut, status_code=status.HTTP_201_CREATED)
async def create_contribution(
    payload: ContributionIn,
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CaseOut:
    case = await service.create_contribution(
        reviewer,
        subject_type=payload.subject_type,
        subject_id=payload.subject_id,
        proposed_changes=payload.proposed_changes,
        notes=payload.notes,
        sources=payload.sources,
    )
    return CaseOut.from_model(case)
