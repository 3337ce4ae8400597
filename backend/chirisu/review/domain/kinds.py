"""Per-kind case configuration: tables, status vocabularies, reasons and actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from chirisu.review.domain.errors import InvalidTransitionError, ValidationError

PENDING = "pending"
IN_REVIEW = "in_review"
NEEDS_CHANGES = "needs_changes"
APPROVED = "approved"
REJECTED = "rejected"
RESOLVED = "resolved"
DISMISSED = "dismissed"

NO_ACTION = "no_action"
DELETE_COMMENT = "delete_comment"
DELETE_REVIEW = "delete_review"


class CaseKind(str, Enum):
    CONTRIBUTION = "content_contributions"
    CONTENT_REPORT = "content_reports"
    COMMENT_REPORT = "comment_reports"
    REVIEW_REPORT = "review_reports"
    USER_REPORT = "user_reports"


@dataclass(frozen=True, slots=True)
class KindConfig:
    kind: CaseKind
    table: str
    statuses: frozenset[str]
    terminal: frozenset[str]
    aliases: Mapping[str, str] = field(default_factory=dict)
    reasons: frozenset[str] = frozenset()
    actions: frozenset[str] = frozenset()
    # action -> status it requires
    delete_actions: Mapping[str, str] = field(default_factory=dict)
    default_notes: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_report(self) -> bool:
        return self.kind is not CaseKind.CONTRIBUTION

    @property
    def open_statuses(self) -> frozenset[str]:
        return self.statuses - self.terminal

    def allowed_statuses(self) -> frozenset[str]:
        return self.statuses

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal

    def normalize_status(self, raw: Optional[str]) -> str:
        """Map a caller-supplied status onto this kind's canonical vocabulary."""
        value = (raw or "").strip().lower()
        value = self.aliases.get(value, value)
        if value not in self.statuses:
            raise InvalidTransitionError("invalid_status", detail=f"{raw!r} is not a {self.kind.value} status")
        return value

    def normalize_action(self, raw: Optional[str], status: str) -> Optional[str]:
        if raw is None or not raw.strip():
            return None
        action = raw.strip().lower()
        if action not in self.actions:
            raise ValidationError("unknown_action", detail=f"{raw!r} is not a {self.kind.value} action")
        required = self.delete_actions.get(action)
        if required is not None and status != required:
            raise ValidationError("action_requires_resolution", detail=f"{action} requires status {required}")
        return action

    def default_note(self, status: str, action: Optional[str]) -> str:
        if action and action in self.default_notes:
            return self.default_notes[action]
        return self.default_notes.get(status, "")


_REPORT_STATUSES = frozenset({PENDING, IN_REVIEW, RESOLVED, DISMISSED})
_REPORT_TERMINAL = frozenset({RESOLVED, DISMISSED})
_REPORT_ALIASES = {"reviewing": IN_REVIEW, "rejected": DISMISSED, "open": PENDING}
_REPORT_NOTES = {
    RESOLVED: "Report resolved",
    DISMISSED: "Report dismissed: no guideline violation",
}


KINDS: dict[CaseKind, KindConfig] = {
    CaseKind.CONTRIBUTION: KindConfig(
        kind=CaseKind.CONTRIBUTION,
        table="content_contributions",
        statuses=frozenset({PENDING, IN_REVIEW, NEEDS_CHANGES, APPROVED, REJECTED}),
        terminal=frozenset({APPROVED, REJECTED}),
        aliases={"reviewing": IN_REVIEW, "dismissed": REJECTED, "open": PENDING},
        default_notes={
            APPROVED: "Contribution approved",
            REJECTED: "Contribution rejected",
        },
    ),
    CaseKind.CONTENT_REPORT: KindConfig(
        kind=CaseKind.CONTENT_REPORT,
        table="content_reports",
        statuses=_REPORT_STATUSES,
        terminal=_REPORT_TERMINAL,
        aliases=_REPORT_ALIASES,
        reasons=frozenset(
            {"missing_info", "incorrect_info", "duplicate_entry", "inappropriate_content", "broken_media", "other"}
        ),
        actions=frozenset({NO_ACTION, "content_corrected"}),
        default_notes=_REPORT_NOTES,
    ),
    CaseKind.COMMENT_REPORT: KindConfig(
        kind=CaseKind.COMMENT_REPORT,
        table="comment_reports",
        statuses=_REPORT_STATUSES,
        terminal=_REPORT_TERMINAL,
        aliases=_REPORT_ALIASES,
        reasons=frozenset({"spam", "offensive_language", "harassment", "spoilers", "inappropriate_content", "other"}),
        actions=frozenset({NO_ACTION, "warning_sent", DELETE_COMMENT}),
        delete_actions={DELETE_COMMENT: RESOLVED},
        default_notes={**_REPORT_NOTES, DELETE_COMMENT: "Comment removed for breaking the community guidelines"},
    ),
    CaseKind.REVIEW_REPORT: KindConfig(
        kind=CaseKind.REVIEW_REPORT,
        table="review_reports",
        statuses=_REPORT_STATUSES,
        terminal=_REPORT_TERMINAL,
        aliases=_REPORT_ALIASES,
        reasons=frozenset(
            {
                "spam",
                "offensive_language",
                "harassment",
                "spoilers",
                "irrelevant_content",
                "misinformation",
                "other",
            }
        ),
        actions=frozenset({NO_ACTION, "warning_sent", DELETE_REVIEW}),
        delete_actions={DELETE_REVIEW: RESOLVED},
        default_notes={**_REPORT_NOTES, DELETE_REVIEW: "Review removed for breaking the community guidelines"},
    ),
    CaseKind.USER_REPORT: KindConfig(
        kind=CaseKind.USER_REPORT,
        table="user_reports",
        statuses=_REPORT_STATUSES,
        terminal=_REPORT_TERMINAL,
        aliases=_REPORT_ALIASES,
        reasons=frozenset(
            {
                "spam",
                "harassment",
                "inappropriate_content",
                "impersonation",
                "offensive_username",
                "offensive_profile",
                "suspicious_activity",
                "other",
            }
        ),
        actions=frozenset({NO_ACTION, "warning_sent", "user_warned", "user_suspended", "user_banned"}),
        default_notes=_REPORT_NOTES,
    ),
}


def kind_config(kind: CaseKind) -> KindConfig:
    return KINDS[kind]


_KIND_ALIASES = {"contributions": CaseKind.CONTRIBUTION, "contribution": CaseKind.CONTRIBUTION}


def parse_kind(raw: str | CaseKind) -> CaseKind:
    if isinstance(raw, CaseKind):
        return raw
    value = (raw or "").strip().lower().replace("-", "_")
    if value in _KIND_ALIASES:
        return _KIND_ALIASES[value]
    try:
        return CaseKind(value)
    except ValueError:
        raise ValidationError("unknown_kind", detail=f"{raw!r} is not a case kind") from None
