"""Subjects a case can point at, and where each one lives."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Union

from chirisu.review.domain.errors import ValidationError
from chirisu.review.domain.kinds import CaseKind


class SubjectType(str, Enum):
    ANIME = "anime"
    MANGA = "manga"
    NOVEL = "novel"
    DONGHUA = "donghua"
    MANHUA = "manhua"
    MANHWA = "manhwa"
    FAN_COMIC = "fan_comic"
    CHARACTER = "character"
    STAFF = "staff"
    VOICE_ACTOR = "voice_actor"
    STUDIO = "studio"
    GENRE = "genre"
    COMMENT = "comment"
    REVIEW = "review"
    USER = "user"


@dataclass(frozen=True, slots=True)
class SubjectSpec:
    table: str
    owner_column: Optional[str] = None
    numeric_id: bool = True


MEDIA_TYPES = frozenset(
    {
        SubjectType.ANIME,
        SubjectType.MANGA,
        SubjectType.NOVEL,
        SubjectType.DONGHUA,
        SubjectType.MANHUA,
        SubjectType.MANHWA,
        SubjectType.FAN_COMIC,
    }
)
ENTITY_TYPES = frozenset(
    {
        SubjectType.CHARACTER,
        SubjectType.STAFF,
        SubjectType.VOICE_ACTOR,
        SubjectType.STUDIO,
        SubjectType.GENRE,
    }
)
CATALOG_TYPES = MEDIA_TYPES | ENTITY_TYPES

SUBJECTS: dict[SubjectType, SubjectSpec] = {
    SubjectType.ANIME: SubjectSpec("anime"),
    SubjectType.MANGA: SubjectSpec("manga"),
    SubjectType.NOVEL: SubjectSpec("novels"),
    SubjectType.DONGHUA: SubjectSpec("donghua"),
    SubjectType.MANHUA: SubjectSpec("manhua"),
    SubjectType.MANHWA: SubjectSpec("manhwa"),
    SubjectType.FAN_COMIC: SubjectSpec("fan_comics"),
    SubjectType.CHARACTER: SubjectSpec("characters"),
    SubjectType.STAFF: SubjectSpec("staff"),
    SubjectType.VOICE_ACTOR: SubjectSpec("voice_actors"),
    SubjectType.STUDIO: SubjectSpec("studios"),
    SubjectType.GENRE: SubjectSpec("genres"),
    SubjectType.COMMENT: SubjectSpec("comments", owner_column="user_id"),
    SubjectType.REVIEW: SubjectSpec("reviews", owner_column="user_id"),
    SubjectType.USER: SubjectSpec("users", owner_column="id", numeric_id=False),
}

_REPORT_KINDS: dict[SubjectType, CaseKind] = {
    SubjectType.COMMENT: CaseKind.COMMENT_REPORT,
    SubjectType.REVIEW: CaseKind.REVIEW_REPORT,
    SubjectType.USER: CaseKind.USER_REPORT,
    **{subject_type: CaseKind.CONTENT_REPORT for subject_type in CATALOG_TYPES},
}


@dataclass(frozen=True, slots=True)
class SubjectLookup:
    subject_type: SubjectType
    subject_id: str
    owner_id: Optional[str] = None


class SubjectResolver(Protocol):
    async def lookup(self, subject_type: SubjectType, subject_id: str) -> Optional[SubjectLookup]:
        """Return the live subject, or None when it does not exist or is deleted."""
        ...


def parse_subject_type(raw: str | SubjectType) -> SubjectType:
    if isinstance(raw, SubjectType):
        return raw
    value = (raw or "").strip().lower().replace("-", "_")
    try:
        return SubjectType(value)
    except ValueError:
        raise ValidationError("unknown_subject_type", detail=f"{raw!r} is not a known subject type") from None


def parse_subject_id(subject_type: SubjectType, raw: object) -> Union[int, str]:
    """Validate a subject id against the storage key type of its table."""
    text = str(raw).strip() if raw is not None else ""
    if not text:
        raise ValidationError("invalid_subject_id")
    if not SUBJECTS[subject_type].numeric_id:
        return text
    try:
        value = int(text)
    except ValueError:
        raise ValidationError("invalid_subject_id", detail=f"{raw!r} is not a numeric id") from None
    if value <= 0:
        raise ValidationError("invalid_subject_id")
    return value


def report_kind_for(subject_type: SubjectType) -> CaseKind:
    return _REPORT_KINDS[subject_type]
