"""Report intake for catalog entries, comments, reviews and users."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from chirisu.review.domain.cases_service import CaseService
from chirisu.review.domain.rbac import ReviewerContext

from .cases import CaseOut
from .deps import get_case_service_dep, get_reviewer

router = APIRouter(prefix="/api/review/v1/reports", tags=["review-reports"])


class ReportIn(BaseModel):
    subject_kind: str
    subject_id: str | int
    reason: str = Field(..., max_length=64)
    description: str = Field(..., max_length=2000)


@router.post("", response_model=CaseOut, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: ReportIn,
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CaseOut:
    case = await service.create_report(
        reviewer,
        subject_kind=payload.subject_kind,
        subject_id=payload.subject_id,
        reason=payload.reason,
        description=payload.description,
    )
    return CaseOut.from_model(case)
