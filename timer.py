# ─────────────────────────────────────────────────────────────────
# timer.py — Background Loops
#
# Three asyncio tasks run beside the request handlers:
#
#   registry sweep     → closes tenant connections that stopped
#                        answering their liveness check
#   idle reaper        → logs out sessions idle past the window
#   auto health check  → re-checks every credentialed tenant
#
# asyncio.sleep() pauses only the loop's own coroutine, so the API
# keeps serving while they wait. A failing iteration is logged and
# the loop carries on; cancelling the task stops it cleanly.
# ─────────────────────────────────────────────────────────────────

import asyncio
import logging

from errors import Unauthenticated
from models import Mode

logger = logging.getLogger("timer")


async def run_periodically(name: str, interval: float, job):
    """Awaits job() every `interval` seconds until cancelled."""

    logger.info(f"⏱️  {name} scheduled every {interval}s")
    while True:
        try:
            await asyncio.sleep(interval)
            await job()
        except asyncio.CancelledError:
            logger.info(f"⏱️  {name} stopped")
            return
        except Exception:
            logger.exception(f"{name} failed, retrying next interval")


async def check_all_sessions(sessions, engine) -> int:
    """
    Runs a health check for every live credentialed session without
    counting it as session activity. Returns how many were checked.
    """

    checked = 0
    for session in sessions.active_sessions(Mode.CREDENTIALED):
        try:
            await engine.run_for_session(sessions, session.session_id, touch=False)
            checked += 1
        except Unauthenticated:
            # logged out or expired since the snapshot
            continue
    if checked:
        logger.info(f"Auto health check completed for {checked} tenant(s)")
    return checked


def start_background_tasks(registry, sessions, engine, settings) -> list:
    return [
        asyncio.create_task(
            run_periodically("Registry sweep", settings.REGISTRY_SWEEP_SECONDS, registry.sweep)
        ),
        asyncio.create_task(
            run_periodically("Idle session reaper", settings.SESSION_SWEEP_SECONDS, sessions.expire_idle)
        ),
        asyncio.create_task(
            run_periodically(
                "Auto health check",
                settings.HEALTH_CHECK_INTERVAL_SECONDS,
                lambda: check_all_sessions(sessions, engine),
            )
        ),
    ]


async def stop_background_tasks(tasks: list):
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
