#!/usr/bin/env python3
"""
Database initialization script for the campaign engine.

- Creates the campaign, discount rule and usage ledger tables.
- Optionally drops them first (ONLY FOR LOCAL/DEV USE).
"""

import asyncio
import argparse

from core.config import settings
from core.database import Base, db_manager, initialize_db
from core.logging import setup_logging, structured_logger, LogFormat
import models  # noqa: F401  registers every campaign table on Base.metadata


async def init_db(drop: bool = False) -> None:
    initialize_db(settings.SQLALCHEMY_DATABASE_URI, settings.is_local)
    try:
        if drop:
            if not settings.is_local:
                raise SystemExit("Refusing to drop tables outside the local environment")
            async with db_manager.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
            structured_logger.warning("Dropped campaign tables")
        await db_manager.create_all()

        structured_logger.info(
            "Campaign tables ready",
            metadata={"tables": sorted(Base.metadata.tables)},
        )
    finally:
        await db_manager.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create campaign engine tables")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first (local only)")
    args = parser.parse_args()

    setup_logging(level=settings.LOG_LEVEL, log_format=LogFormat(settings.LOG_FORMAT.lower()))
    asyncio.run(init_db(drop=args.drop))


if __name__ == "__main__":
    main()
