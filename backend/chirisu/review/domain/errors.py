"""Typed failures raised by the review workflow.

Each error carries a stable ``code`` that the HTTP layer returns verbatim so
clients can branch on it, plus the HTTP status it maps to.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class ReviewWorkflowError(Exception):
    """Base class for review workflow failures."""

    status_code = 400
    default_code = "review_error"

    def __init__(self, code: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        self.code = code or self.default_code
        self.detail = detail
        super().__init__(detail or self.code)

    def extra(self) -> dict[str, Any]:
        return {}


class AuthenticationError(ReviewWorkflowError):
    status_code = 401
    default_code = "invalid_token"


class NotAuthorizedError(ReviewWorkflowError):
    status_code = 403
    default_code = "not_authorized"


AuthorizationError = NotAuthorizedError


class ValidationError(ReviewWorkflowError):
    status_code = 400
    default_code = "invalid_request"


class DuplicateError(ReviewWorkflowError):
    status_code = 409
    default_code = "duplicate_report"


class SelfReportError(ReviewWorkflowError):
    status_code = 400
    default_code = "self_report"


class NotFoundError(ReviewWorkflowError):
    status_code = 404
    default_code = "case_not_found"


class AlreadyAssignedError(ReviewWorkflowError):
    status_code = 409
    default_code = "case_already_taken"

    def __init__(self, current_assignee: str) -> None:
        super().__init__(detail=f"case is assigned to {current_assignee}")
        self.current_assignee = current_assignee

    def extra(self) -> dict[str, Any]:
        return {"assigned_to": self.current_assignee}


class InvalidTransitionError(ReviewWorkflowError):
    status_code = 409
    default_code = "invalid_transition"


class ApplyFailedError(ReviewWorkflowError):
    status_code = 422
    default_code = "apply_failed"

    def __init__(self, fields: Mapping[str, str] | None = None, *, code: Optional[str] = None) -> None:
        self.fields = dict(fields or {})
        super().__init__(code, detail=", ".join(f"{k}: {v}" for k, v in self.fields.items()) or None)

    def extra(self) -> dict[str, Any]:
        return {"fields": dict(self.fields)} if self.fields else {}
