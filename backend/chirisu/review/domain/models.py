"""Review case records shared by the service and its repositories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from chirisu.review.domain.kinds import CaseKind


@dataclass
class ReviewCase:
    """A contribution or report moving through the review lifecycle."""

    case_id: str
    kind: CaseKind
    subject_type: str
    subject_id: str
    author_id: str
    payload: dict[str, Any]
    status: str
    created_at: datetime
    updated_at: datetime
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    action_taken: Optional[str] = None
    subject_owner_id: Optional[str] = None

    @property
    def is_assigned(self) -> bool:
        return self.assigned_to is not None


@dataclass
class NewCase:
    kind: CaseKind
    subject_type: str
    subject_id: str
    author_id: str
    payload: dict[str, Any]
    subject_owner_id: Optional[str] = None


@dataclass
class CasePage:
    items: list[ReviewCase]
    total: int
    limit: int
    offset: int


@dataclass
class AuditLogEntry:
    """Represents an immutable audit trail row."""

    actor_id: Optional[str]
    action: str
    kind: CaseKind
    case_id: str
    meta: Mapping[str, object]
    created_at: datetime


@dataclass(frozen=True)
class CatalogUpdate:
    """Typed column assignments for one catalog row."""

    subject_type: str
    table: str
    row_id: Any
    assignments: tuple[tuple[str, Any], ...]

    def columns(self) -> list[str]:
        return [column for column, _ in self.assignments]


@dataclass
class Resolution:
    """Everything a repository needs to commit a status transition in one unit."""

    kind: CaseKind
    case_id: str
    actor_id: str
    status: str
    terminal: bool
    now: datetime
    expected_status: str
    expected_assignee: Optional[str]
    notes: Optional[str] = None
    action_taken: Optional[str] = None
    catalog_update: Optional[CatalogUpdate] = None
    delete_subject: Optional[tuple[str, Any]] = None
    audit_meta: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditDraft:
    """An audit row written in the same unit as the case change it describes."""

    actor_id: Optional[str]
    action: str
    meta: Mapping[str, object] = field(default_factory=dict)
