"""Run a single auto-release sweep and exit.

For deployments that disable the in-process sweep (AUTO_RELEASE_ENABLED=false)
and schedule this from cron instead:

    python -m scripts.auto_release
"""

import asyncio
import logging
import sys

import redis.asyncio as aioredis

from app.config import settings
from app.database import create_engine, create_session_factory
from app.services.auto_release import sweep_once
from app.services.gateway import StripeGateway

logger = logging.getLogger("scripts.auto_release")


async def main() -> int:
    engine = create_engine(settings.database_url)
    redis = aioredis.from_url(settings.redis_url)
    try:
        released = await sweep_once(
            create_session_factory(engine), redis, StripeGateway(), release_lock=True,
        )
    finally:
        await redis.aclose()
        await engine.dispose()

    if released is None:
        logger.info("Another worker holds the sweep lock; nothing done")
    else:
        logger.info("Released %d transaction(s)", released)
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper())
    sys.exit(asyncio.run(main()))
