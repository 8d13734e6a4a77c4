"""
Asyncio driver for an exam session's timers

A display tick every TICK_INTERVAL and a server reconciliation every
RECONCILE_INTERVAL, both stopped when the session finalizes or the task is
cancelled (the student navigated away). Session calls block on HTTP, so they
run in a worker thread one at a time while the loop stays free.
"""
import asyncio
import logging
from typing import Optional

from app.client.config import client_settings
from app.client.exam_session import ExamSession
from app.schemas.attempt import SubmissionResult

logger = logging.getLogger(__name__)


async def run_exam_session(
    session: ExamSession,
    tick_interval: Optional[float] = None,
    reconcile_interval: Optional[float] = None,
) -> Optional[SubmissionResult]:
    """
    Drive a loaded session until it is finalized

    Args:
        session: Session already past load()
        tick_interval: Seconds between display ticks
        reconcile_interval: Seconds between server clock polls

    Returns:
        The submission result, or None when the attempt ended without one
    """
    if tick_interval is None:
        tick_interval = client_settings.TICK_INTERVAL
    if reconcile_interval is None:
        reconcile_interval = client_settings.RECONCILE_INTERVAL

    loop = asyncio.get_running_loop()
    last_reconcile = loop.time()

    try:
        while not session.is_terminal:
            await asyncio.sleep(tick_interval)
            await asyncio.to_thread(session.tick)
            if session.is_terminal:
                break

            if loop.time() - last_reconcile >= reconcile_interval:
                await asyncio.to_thread(session.reconcile)
                last_reconcile = loop.time()
    except asyncio.CancelledError:
        logger.info(f"Timers cancelled for exam {session.exam_id}")
        raise
    finally:
        session.close()

    return session.result
