"""Apply the bundled SQL migrations in filename order."""

from __future__ import annotations

from pathlib import Path

import asyncpg

from chirisu.obs.logging import get_logger

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

logger = get_logger("chirisu.migrations")


def migration_files(directory: Path = MIGRATIONS_DIR) -> list[Path]:
	return sorted(path for path in directory.glob("*.sql") if path.is_file())


async def apply_migrations(pool: asyncpg.Pool, directory: Path = MIGRATIONS_DIR) -> list[str]:
	"""Run every migration not yet recorded in schema_migrations; returns the versions applied."""
	applied: list[str] = []
	async with pool.acquire() as conn:
		await conn.execute(
			"CREATE TABLE IF NOT EXISTS schema_migrations (version TEXT PRIMARY KEY, applied_at TIMESTAMPTZ NOT NULL DEFAULT now())"
		)
		done = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}
		for path in migration_files(directory):
			version = path.stem
			if version in done:
				continue
			sql = path.read_text(encoding="utf-8")
			async with conn.transaction():
				await conn.execute(sql)
				await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1) ON CONFLICT DO NOTHING", version)
			logger.info("migration applied", extra={"version": version})
			applied.append(version)
	return applied
