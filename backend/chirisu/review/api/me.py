from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from chirisu.review.domain.cases_service import CaseService
from chirisu.review.domain.kinds import CaseKind
from chirisu.review.domain.rbac import ReviewerContext

from .cases import CasePageOut
from .deps import get_case_service_dep, get_reviewer

router = APIRouter(prefix="/api/review/v1/me", tags=["review-me"])


@router.get("/cases", response_model=CasePageOut)
async def list_my_cases(
    kind: str = Query(default=CaseKind.CONTRIBUTION.value),
    status: str | None = Query(default=None),
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    reviewer: ReviewerContext = Depends(get_reviewer),
    service: CaseService = Depends(get_case_service_dep),
) -> CasePageOut:
    page = await service.list_my_cases(reviewer, kind, status=status, limit=limit, offset=offset)
    return CasePageOut.from_model(page)
