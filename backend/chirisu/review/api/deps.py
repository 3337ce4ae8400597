"""Shared FastAPI dependencies for review routers."""

from __future__ import annotations

from fastapi import Depends

from chirisu.infra.auth import AuthenticatedUser, get_current_user
from chirisu.review.domain.cases_service import CaseService
from chirisu.review.domain.container import get_case_service
from chirisu.review.domain.rbac import ReviewerContext, resolve_reviewer


def get_case_service_dep() -> CaseService:
    return get_case_service()


async def get_reviewer(user: AuthenticatedUser = Depends(get_current_user)) -> ReviewerContext:
    return resolve_reviewer(user)
