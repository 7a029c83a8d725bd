"""Delete expired distribution previews once.

Usage:
    python -m app.tools.sweep_previews
    python -m app.tools.sweep_previews --dry-run  # only count what would go
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from app.adapters.jobs.sweeper import sweep_expired
from app.adapters.persistence.database import async_session_factory, engine
from app.adapters.persistence.models import DistributionPreviewModel
from app.adapters.persistence.repositories import SqlPreviewRepository

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)


async def run(dry_run: bool = False) -> int:
    now = datetime.now(timezone.utc)
    async with async_session_factory() as session:
        if dry_run:
            count = (
                await session.execute(
                    select(func.count(DistributionPreviewModel.id)).where(
                        DistributionPreviewModel.expires_at < now
                    )
                )
            ).scalar() or 0
            logger.info("%d expired previews would be deleted", count)
            return count

        deleted = await sweep_expired(SqlPreviewRepository(session), now)
        await session.commit()
        logger.info("Deleted %d expired previews", deleted)
        return deleted


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete expired distribution previews")
    parser.add_argument("--dry-run", action="store_true", help="Only report the count")
    args = parser.parse_args()

    async def _main() -> None:
        try:
            await run(dry_run=args.dry_run)
        finally:
            await engine.dispose()

    asyncio.run(_main())


if __name__ == "__main__":
    main()
