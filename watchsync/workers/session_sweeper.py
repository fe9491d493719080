"""Background sweeper that deletes watch sessions older than their TTL."""

from __future__ import annotations

import asyncio

from loguru import logger

from watchsync.app_config import get_app_environ_config
from watchsync.domain.watch.session_domain import WatchSessionService
from watchsync.shared.utils import format_error


async def sweep_once(service: WatchSessionService) -> int:
    removed = await service.sweep_expired_sessions()
    if removed:
        logger.info("Session sweeper removed {} expired sessions", removed)
    return removed


async def run_session_sweeper(
    service: WatchSessionService | None = None,
    interval_seconds: float | None = None,
) -> None:
    """Run the expiry sweep periodically until cancelled."""
    service = service or WatchSessionService()
    if interval_seconds is None:
        interval_seconds = get_app_environ_config().SWEEP_INTERVAL_SECONDS

    logger.info("Session sweeper started (interval={}s)", interval_seconds)
    while True:
        try:
            await sweep_once(service)
        except asyncio.CancelledError:
            logger.info("Session sweeper cancelled")
            break
        except Exception as e:
            logger.warning("Session sweep failed: {}", format_error(e))
        try:
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            logger.info("Session sweeper sleep cancelled")
            break


def start_session_sweeper(
    service: WatchSessionService | None = None,
    interval_seconds: float | None = None,
) -> asyncio.Task[None]:
    return asyncio.create_task(run_session_sweeper(service, interval_seconds), name="session-sweeper")
