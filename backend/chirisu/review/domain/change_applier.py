"""Turn a contribution's proposed changes into a typed catalog update."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from chirisu.review.domain.catalog import FieldCoercionError, coerce_value, resolve_field
from chirisu.review.domain.errors import ApplyFailedError, ValidationError
from chirisu.review.domain.models import CatalogUpdate
from chirisu.review.domain.subjects import CATALOG_TYPES, SUBJECTS, SubjectType, parse_subject_id

logger = logging.getLogger(__name__)


def normalize_proposed_changes(subject_type: SubjectType, changes: Any) -> dict[str, dict[str, Any]]:
    """Validate field names at creation time and key them by their API name.

    Values are not coerced here; typing is enforced when the change is applied.
    """
    if subject_type not in CATALOG_TYPES:
        raise ValidationError("unknown_subject_type", detail=f"{subject_type.value} cannot receive contributions")
    if not isinstance(changes, Mapping) or not changes:
        raise ValidationError("empty_changes")
    normalized: dict[str, dict[str, Any]] = {}
    unknown: list[str] = []
    for name, change in changes.items():
        resolved = resolve_field(subject_type, str(name))
        if resolved is None:
            unknown.append(str(name))
            continue
        if not isinstance(change, Mapping) or "new" not in change:
            raise ValidationError("invalid_change", detail=f"{name} must be an object with a 'new' value")
        api_name, _ = resolved
        if api_name in normalized:
            raise ValidationError("duplicate_field", detail=f"{name} is proposed more than once")
        normalized[api_name] = {"old": change.get("old"), "new": change["new"]}
    if unknown:
        raise ValidationError("unknown_fields", detail=", ".join(sorted(unknown)))
    return normalized


def build_catalog_update(subject_type: str, subject_id: str, changes: Mapping[str, Any]) -> CatalogUpdate:
    """Coerce every proposed value before anything is written.

    Any field that fails coercion fails the whole update.
    """
    try:
        parsed_type = SubjectType(subject_type)
    except ValueError:
        raise ApplyFailedError(code="unknown_subject_type") from None
    if parsed_type not in CATALOG_TYPES:
        raise ApplyFailedError(code="unknown_subject_type")
    try:
        row_id = parse_subject_id(parsed_type, subject_id)
    except ValidationError:
        raise ApplyFailedError(code="subject_not_found") from None
    if not changes:
        raise ApplyFailedError(code="empty_changes")

    assignments: list[tuple[str, Any]] = []
    errors: dict[str, str] = {}
    for name, change in changes.items():
        resolved = resolve_field(parsed_type, name)
        if resolved is None:
            errors[name] = "unknown_field"
            continue
        _, spec = resolved
        new_value = change.get("new") if isinstance(change, Mapping) else None
        try:
            assignments.append((spec.column, coerce_value(spec, new_value)))
        except FieldCoercionError as exc:
            errors[name] = exc.code
    if errors:
        logger.info(
            "contribution rejected by catalog schema",
            extra={"subject_type": parsed_type.value, "subject_id": subject_id, "fields": errors},
        )
        raise ApplyFailedError(errors)
    return CatalogUpdate(
        subject_type=parsed_type.value,
        table=SUBJECTS[parsed_type].table,
        row_id=row_id,
        assignments=tuple(assignments),
    )
