"""Periodic auto-release of escrow whose holding period has elapsed.

A single background task per worker wakes every
``auto_release_interval_seconds``. Workers race for a short-lived Redis lock so
only one of them sweeps per tick; the tracker's conditional updates keep a
sweep and a concurrent manual release from both succeeding.
"""

import asyncio
import logging
from collections.abc import Callable

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.services.escrow import EscrowTracker
from app.services.gateway import PaymentGateway, StripeGateway

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "escrow:auto_release:lock"


async def sweep_once(
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    gateway: PaymentGateway,
    lock_ttl: int | None = None,
    release_lock: bool = False,
) -> int | None:
    """Run one auto-release pass. Returns None if another worker holds the lock.

    The periodic loop keeps the lock for the rest of its interval so one worker
    sweeps per tick. One-shot runs pass ``release_lock=True`` so the next
    scheduled run is not skipped.
    """
    ttl = lock_ttl or settings.auto_release_interval_seconds
    acquired = await redis.set(SWEEP_LOCK_KEY, "1", nx=True, ex=max(ttl - 1, 1))
    if not acquired:
        logger.debug("Auto-release sweep already running elsewhere, skipping")
        return None

    try:
        async with session_factory() as db:
            return await EscrowTracker(db, gateway).auto_release()
    finally:
        if release_lock:
            await redis.delete(SWEEP_LOCK_KEY)


async def run_auto_release_loop(
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    gateway_factory: Callable[[], PaymentGateway] = StripeGateway,
    interval: int | None = None,
) -> None:
    """Sweep forever until cancelled."""
    interval = interval or settings.auto_release_interval_seconds

    while True:
        try:
            await sweep_once(session_factory, redis, gateway_factory(), lock_ttl=interval)
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Auto-release sweep shutting down")
            break
        except Exception:
            logger.exception("Auto-release sweep error, retrying in 60s")
            await asyncio.sleep(min(60, interval))
