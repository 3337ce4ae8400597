"""Resolve review subjects and their owners from catalog and community tables."""

from __future__ import annotations

from typing import Optional

import asyncpg

from chirisu.review.domain.errors import ValidationError
from chirisu.review.domain.subjects import SUBJECTS, SubjectLookup, SubjectType, parse_subject_id


class PostgresSubjectResolver:
    """Looks up live (not soft-deleted) rows for the subject types a case can point at."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def lookup(self, subject_type: SubjectType, subject_id: str) -> Optional[SubjectLookup]:
        spec = SUBJECTS[subject_type]
        try:
            key = parse_subject_id(subject_type, subject_id)
        except ValidationError:
            return None
        owner_expr = f"{spec.owner_column}::text" if spec.owner_column else "NULL::text"
        id_expr = "id" if spec.numeric_id else "id::text"
        query = f"SELECT {owner_expr} AS owner_id FROM {spec.table} WHERE {id_expr} = $1 AND deleted_at IS NULL"
        record = await self.pool.fetchrow(query, key)
        if record is None:
            return None
        return SubjectLookup(subject_type, str(subject_id), record["owner_id"])
