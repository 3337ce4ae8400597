"""Apply review schema migrations to the configured database.

Usage: python scripts/apply_migrations.py  (reads POSTGRES_URL / DATABASE_URL)
"""

import asyncio
import sys

from chirisu.infra import postgres
from chirisu.infra.schema import apply_migrations
from chirisu.obs.logging import configure_logging


async def main() -> int:
    configure_logging()
    pool = await postgres.init_pool()
    try:
        applied = await apply_migrations(pool)
    finally:
        await postgres.close_pool()
    if applied:
        print(f"Applied: {', '.join(applied)}")
    else:
        print("Schema up to date.")
    return 0


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    sys.exit(asyncio.run(main()))
