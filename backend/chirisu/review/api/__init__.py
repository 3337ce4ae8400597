"""Review API routers."""

from fastapi import APIRouter

from . import cases, contributions, me, reports

router = APIRouter()
router.include_router(cases.router)
router.include_router(contributions.router)
router.include_router(reports.router)
router.include_router(me.router)

__all__ = ["router"]
