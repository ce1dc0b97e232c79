import asyncio
from datetime import timedelta

from app.core.config import settings
from app.core.logging_config import get_logger
from app.repositories.generation import GenerationStore
from app.utils.datetime_utils import get_current_utc_datetime


logger = get_logger("session_reaper")

STALE_SESSION_MESSAGE = "Generation timed out; please try again"


async def reap_stale_sessions_once(
    store: GenerationStore,
    stale_minutes: int = settings.STALE_SESSION_MINUTES,
) -> int:
    """Fail pending/processing sessions that have not progressed for ``stale_minutes``.

    Sessions orphaned by a restart would otherwise stay non-terminal forever.
    Returns number of sessions failed.
    """
    cutoff = get_current_utc_datetime() - timedelta(minutes=stale_minutes)
    count = await store.fail_stale_sessions(cutoff, STALE_SESSION_MESSAGE)
    if count:
        logger.info(f"Session reaper: failed {count} stale session(s)")
    return count


async def run_session_reaper_task(
    store: GenerationStore,
    poll_seconds: int = settings.REAPER_POLL_SECONDS,
    stale_minutes: int = settings.STALE_SESSION_MINUTES,
):
    """Background loop: periodically fail stale generation sessions."""
    logger.info(f"Starting session reaper task (interval={poll_seconds}s, stale after {stale_minutes}m)")
    try:
        while True:
            try:
                await reap_stale_sessions_once(store, stale_minutes)
            except Exception as e:
                logger.exception(f"Session reaper error: {e}")
            await asyncio.sleep(poll_seconds)
    except asyncio.CancelledError:
        logger.info("Session reaper task cancelled; shutting down")
        raise
