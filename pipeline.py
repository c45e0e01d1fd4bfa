# ─────────────────────────────────────────────────────────────────
# pipeline.py — Deployments & CI/CD Status
#
# A deployment moves through an explicit state machine:
#
#   pending → in_progress → success
#                         ↘ failed
#
# trigger() records the deployment, moves it to in_progress and
# returns straight away. A background task finishes it after the
# configured duration; the request never waits for that.
#
# PipelineState is the ONE process-wide status shown on every
# dashboard ("CI/CD Status"). It is not per tenant: it describes
# the service's own pipeline. DeploymentManager is its only writer.
# ─────────────────────────────────────────────────────────────────

import asyncio
import logging
from datetime import datetime, timezone

from errors import InvalidRequest
from models import DeploymentStatus

logger = logging.getLogger("pipeline")

TRANSITIONS = {
    DeploymentStatus.PENDING: {DeploymentStatus.IN_PROGRESS},
    DeploymentStatus.IN_PROGRESS: {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED},
    DeploymentStatus.SUCCESS: set(),
    DeploymentStatus.FAILED: set(),
}


def check_transition(current, target):
    current, target = DeploymentStatus(current), DeploymentStatus(target)
    if target not in TRANSITIONS[current]:
        raise ValueError(f"Illegal deployment transition {current.value} → {target.value}")
    return target


class PipelineState:
    """Process-wide CI/CD status. Read by anyone, written by DeploymentManager only."""

    def __init__(self, status: DeploymentStatus = DeploymentStatus.SUCCESS):
        self._status = status
        self.updated_at = datetime.now(timezone.utc)

    @property
    def status(self) -> str:
        return self._status.value

    def set_status(self, status: DeploymentStatus):
        self._status = status
        self.updated_at = datetime.now(timezone.utc)

    def snapshot(self) -> dict:
        return {"status": self.status, "updated_at": self.updated_at}


class DeploymentManager:
    """
    Starts simulated deployments against a tenant store and finishes
    them on a timer.
    """

    def __init__(self, state: PipelineState, duration: float = 2.0):
        self.state = state
        self.duration = duration
        self._tasks = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def trigger(self, store, version) -> dict:
        """
        Records a deployment of `version` and returns
        {"id", "version", "status": "in_progress"} immediately.
        """

        version = version.strip() if isinstance(version, str) else ""
        if not version:
            raise InvalidRequest("Version is required")

        deployment = await store.add_deployment(version, DeploymentStatus.PENDING.value)
        status = check_transition(deployment["status"], DeploymentStatus.IN_PROGRESS)
        await store.update_deployment(deployment["id"], status.value)
        self.state.set_status(DeploymentStatus.IN_PROGRESS)

        logger.info(f"🚀 Deployment {deployment['id']} of version {version} in progress")

        task = asyncio.create_task(self._finish(store, deployment["id"]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        return {"id": deployment["id"], "version": version, "status": status.value}

    async def _finish(self, store, deployment_id: str):
        await asyncio.sleep(self.duration)

        final = check_transition(DeploymentStatus.IN_PROGRESS, DeploymentStatus.SUCCESS)
        try:
            await store.update_deployment(deployment_id, final.value)
        except Exception:
            # the tenant may have logged out and its connection closed
            logger.exception(f"Could not record completion of deployment {deployment_id}")
            final = DeploymentStatus.FAILED
            try:
                await store.update_deployment(deployment_id, final.value)
            except Exception:
                logger.warning(f"Deployment {deployment_id} left in_progress in its store")

        self.state.set_status(final)
        logger.info(f"Deployment {deployment_id} finished: {final.value}")

    async def shutdown(self):
        """Cancels deployments still waiting to finish."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
