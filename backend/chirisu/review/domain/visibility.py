"""Who may see, and act on, which review cases."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from chirisu.review.domain.kinds import kind_config
from chirisu.review.domain.models import ReviewCase


@dataclass(frozen=True, slots=True)
class VisibilityScope:
    """A staff viewer plus the instant before which a claim counts as abandoned."""

    viewer_id: str
    is_admin: bool
    stale_before: datetime


def stale_cutoff(now: datetime, window: timedelta) -> datetime:
    return now - window


def is_stale(case: ReviewCase, stale_before: datetime) -> bool:
    """A claim is stale once it is strictly older than the window and the case is still open."""
    if case.assigned_at is None:
        return False
    if kind_config(case.kind).is_terminal(case.status):
        return False
    return case.assigned_at < stale_before


def is_visible(case: ReviewCase, scope: VisibilityScope) -> bool:
    if scope.is_admin:
        return True
    if case.assigned_to is None or case.assigned_to == scope.viewer_id:
        return True
    return is_stale(case, scope.stale_before)


def can_transition(case: ReviewCase, scope: VisibilityScope) -> bool:
    """Transition rights mirror visibility: admin, unassigned, own claim or abandoned claim."""
    return is_visible(case, scope)


def build_visibility_predicate(
    scope: VisibilityScope,
    params: list,
    terminal_statuses: Iterable[str],
    *,
    alias: Optional[str] = None,
) -> str:
    """Append bind values to ``params`` and return the matching SQL condition."""
    if scope.is_admin:
        return "TRUE"
    prefix = f"{alias}." if alias else ""
    params.append(scope.viewer_id)
    viewer_ref = f"${len(params)}"
    params.append(scope.stale_before)
    cutoff_ref = f"${len(params)}"
    params.append(sorted(terminal_statuses))
    terminal_ref = f"${len(params)}"
    return (
        f"({prefix}assigned_to IS NULL"
        f" OR {prefix}assigned_to = {viewer_ref}"
        f" OR ({prefix}assigned_at < {cutoff_ref} AND {prefix}status <> ALL({terminal_ref}::text[])))"
    )
