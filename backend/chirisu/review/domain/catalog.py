"""Editable catalog fields per subject type and how proposed values are typed.

Contributions name fields by their API name (camelCase). The column name is
accepted as an alias. Each field carries the column's type so a proposed value
is checked against the destination schema rather than whatever JSON type the
contributor happened to send.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from chirisu.review.domain.subjects import SubjectType


class FieldType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"


class FieldCoercionError(ValueError):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


@dataclass(frozen=True, slots=True)
class FieldSpec:
    column: str
    type: FieldType
    nullable: bool = True
    max_length: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    choices: Optional[frozenset[str]] = None


def _text(column: str, *, max_length: Optional[int] = None, nullable: bool = True, choices=None) -> FieldSpec:
    return FieldSpec(
        column,
        FieldType.TEXT,
        nullable=nullable,
        max_length=max_length,
        choices=frozenset(choices) if choices else None,
    )


def _int(column: str, *, min_value: Optional[int] = 0, max_value: Optional[int] = None) -> FieldSpec:
    return FieldSpec(column, FieldType.INTEGER, min_value=min_value, max_value=max_value)


_MEDIA_COMMON: dict[str, FieldSpec] = {
    "title": _text("title", max_length=500, nullable=False),
    "titleNative": _text("title_native", max_length=500),
    "titleRomaji": _text("title_romaji", max_length=500),
    "titleEnglish": _text("title_english", max_length=500),
    "titleSpanish": _text("title_spanish", max_length=500),
    "synopsis": _text("synopsis"),
    "coverImageUrl": _text("cover_image_url", max_length=1000),
    "bannerImageUrl": _text("banner_image_url", max_length=1000),
    "startDate": FieldSpec("start_date", FieldType.DATE),
    "endDate": FieldSpec("end_date", FieldType.DATE),
    "statusId": _int("status_id", min_value=1),
    "source": _text("source", max_length=50),
    "countryOfOrigin": _text("country_of_origin", max_length=2),
    "isNsfw": FieldSpec("is_nsfw", FieldType.BOOLEAN, nullable=False),
    "averageScore": FieldSpec("average_score", FieldType.DECIMAL, min_value=0, max_value=10),
}

_ANIMATED: dict[str, FieldSpec] = {
    **_MEDIA_COMMON,
    "episodeCount": _int("episode_count"),
    "duration": _int("duration"),
    "season": _text("season", choices={"winter", "spring", "summer", "fall"}),
    "seasonYear": _int("season_year", min_value=1900, max_value=2100),
    "trailerUrl": _text("trailer_url", max_length=1000),
    "type": _text("type", max_length=20),
}

_PRINTED: dict[str, FieldSpec] = {
    **_MEDIA_COMMON,
    "chapters": _int("chapters"),
    "volumes": _int("volumes"),
    "type": _text("type", max_length=20),
}

_PERSON: dict[str, FieldSpec] = {
    "name": _text("name", max_length=255, nullable=False),
    "nameRomaji": _text("name_romaji", max_length=255),
    "nameNative": _text("name_native", max_length=255),
    "imageUrl": _text("image_url", max_length=1000),
    "gender": _text("gender", max_length=20),
    "dateOfBirth": FieldSpec("date_of_birth", FieldType.DATE),
    "bio": _text("bio"),
}

FIELD_SETS: dict[SubjectType, dict[str, FieldSpec]] = {
    SubjectType.ANIME: _ANIMATED,
    SubjectType.DONGHUA: _ANIMATED,
    SubjectType.MANGA: _PRINTED,
    SubjectType.MANHUA: _PRINTED,
    SubjectType.MANHWA: _PRINTED,
    SubjectType.NOVEL: _PRINTED,
    SubjectType.FAN_COMIC: _PRINTED,
    SubjectType.CHARACTER: {
        "name": _text("name", max_length=255, nullable=False),
        "nameRomaji": _text("name_romaji", max_length=255),
        "nameNative": _text("name_native", max_length=255),
        "description": _text("description"),
        "imageUrl": _text("image_url", max_length=1000),
        "gender": _text("gender", max_length=20),
        "age": _text("age", max_length=50),
        "bloodType": _text("blood_type", max_length=5),
        "dateOfBirth": FieldSpec("date_of_birth", FieldType.DATE),
    },
    SubjectType.STAFF: {**_PERSON, "hometown": _text("hometown", max_length=255)},
    SubjectType.VOICE_ACTOR: {**_PERSON, "language": _text("language", max_length=50)},
    SubjectType.STUDIO: {
        "name": _text("name", max_length=255, nullable=False),
        "isAnimationStudio": FieldSpec("is_animation_studio", FieldType.BOOLEAN, nullable=False),
        "websiteUrl": _text("website_url", max_length=1000),
    },
    SubjectType.GENRE: {
        "name": _text("name", max_length=100, nullable=False),
        "nameEs": _text("name_es", max_length=100),
        "description": _text("description"),
    },
}

_COLUMN_ALIASES: dict[SubjectType, dict[str, str]] = {
    subject_type: {spec.column: name for name, spec in fields.items()}
    for subject_type, fields in FIELD_SETS.items()
}


def resolve_field(subject_type: SubjectType, name: str) -> Optional[tuple[str, FieldSpec]]:
    """Return ``(api_name, spec)`` for a field name or column alias, if editable."""
    fields = FIELD_SETS.get(subject_type)
    if not fields:
        return None
    if name in fields:
        return name, fields[name]
    api_name = _COLUMN_ALIASES[subject_type].get(name)
    if api_name is None:
        return None
    return api_name, fields[api_name]


_INTEGER_RE = re.compile(r"^[+-]?[0-9]+\Z")

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def coerce_value(spec: FieldSpec, value: Any) -> Any:
    """Coerce ``value`` to the column type of ``spec`` or raise FieldCoercionError."""
    if value is None or (isinstance(value, str) and not value.strip() and spec.type is not FieldType.TEXT):
        if not spec.nullable:
            raise FieldCoercionError("required")
        return None
    if spec.type is FieldType.TEXT:
        return _coerce_text(spec, value)
    if spec.type is FieldType.INTEGER:
        return _check_bounds(spec, _coerce_int(value))
    if spec.type is FieldType.DECIMAL:
        return _check_bounds(spec, _coerce_decimal(value))
    if spec.type is FieldType.BOOLEAN:
        return _coerce_bool(value)
    return _coerce_date(value)


def _coerce_text(spec: FieldSpec, value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        raise FieldCoercionError("expected_text")
    text = value if isinstance(value, str) else str(value)
    if not spec.nullable and not text.strip():
        raise FieldCoercionError("required")
    if spec.max_length is not None and len(text) > spec.max_length:
        raise FieldCoercionError("too_long")
    if spec.choices is not None and text not in spec.choices:
        raise FieldCoercionError("invalid_choice")
    return text


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        raise FieldCoercionError("expected_integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if _INTEGER_RE.match(text):
            return int(text)
    raise FieldCoercionError("expected_integer")


def _coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise FieldCoercionError("expected_decimal")
    if isinstance(value, (int, float, str, Decimal)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise FieldCoercionError("expected_decimal") from None
        if result.is_finite():
            return result
    raise FieldCoercionError("expected_decimal")


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise FieldCoercionError("expected_boolean")


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise FieldCoercionError("expected_date")


def _check_bounds(spec: FieldSpec, value):
    if spec.min_value is not None and value < spec.min_value:
        raise FieldCoercionError("below_minimum")
    if spec.max_value is not None and value > spec.max_value:
        raise FieldCoercionError("above_maximum")
    return value
