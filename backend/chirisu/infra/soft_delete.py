from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def now_utc() -> datetime:
	return datetime.now(timezone.utc)


async def soft_delete(conn: Any, table: str, id_col: str, row_id: Any) -> bool:
	"""Set deleted_at = NOW() on a row if it is not already deleted.

	Callers must pass `table` and `id_col` from constants; they are interpolated.
	Returns True when a live row was tombstoned.
	"""
	q = f"UPDATE {table} SET deleted_at = NOW() WHERE {id_col} = $1 AND deleted_at IS NULL"
	status = await conn.execute(q, row_id)
	return status.endswith(" 1")
