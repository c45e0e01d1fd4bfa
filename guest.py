# ─────────────────────────────────────────────────────────────────
# guest.py — Guest Dataset Store
#
# A visitor without credentials can still look around: each guest
# session gets its own in-memory copy of a small demo dataset.
# Nothing here touches a database and nothing survives a restart.
#
# Every session receives a fresh MemoryStore built from the seed,
# so changes made in one guest session are invisible to all others.
# ─────────────────────────────────────────────────────────────────

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from database import MemoryStore

logger = logging.getLogger("guest")

_SEED_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

SEED_SERVERS = [
    {"name": "demo-api", "url": "https://demo-api.example.com/health", "status": "Up"},
    {"name": "demo-worker", "url": "https://demo-worker.example.com/health", "status": "Down"},
]

SEED_LOGS = [
    {
        "timestamp": _SEED_TIME,
        "statuses": {
            "demo-api": {"status": "Up", "reason": "OK 200"},
            "demo-worker": {"status": "Up", "reason": "OK 200"},
        },
    },
    {
        "timestamp": _SEED_TIME + timedelta(minutes=1),
        "statuses": {
            "demo-api": {"status": "Up", "reason": "OK 200"},
            "demo-worker": {"status": "Down", "reason": "ECONNREFUSED"},
        },
    },
]

SEED_DEPLOYMENTS = [
    {"id": "demo-deploy-1", "version": "1.0.0", "status": "success", "timestamp": _SEED_TIME - timedelta(days=2)},
    {"id": "demo-deploy-2", "version": "1.1.0", "status": "success", "timestamp": _SEED_TIME - timedelta(hours=3)},
]


def build_guest_dataset() -> MemoryStore:
    """A new, independent copy of the demo data."""
    return MemoryStore(servers=SEED_SERVERS, logs=SEED_LOGS, deployments=SEED_DEPLOYMENTS)


class GuestDatasetStore:
    """Maps guest session ids to their private demo dataset."""

    def __init__(self, factory=build_guest_dataset):
        self._factory = factory
        self._datasets = {}
        self._lock = asyncio.Lock()

    def __len__(self):
        return len(self._datasets)

    def __contains__(self, session_id):
        return session_id in self._datasets

    async def get(self, session_id: str) -> MemoryStore:
        """Returns the session's dataset, creating it from the seed on first use."""

        async with self._lock:
            dataset = self._datasets.get(session_id)
            if dataset is None:
                dataset = self._factory()
                self._datasets[session_id] = dataset
                logger.info(f"Materialised guest dataset ({len(self._datasets)} active)")
            return dataset

    async def discard(self, session_id: str) -> bool:
        """Drops the session's dataset. Safe to call when there is none."""

        async with self._lock:
            removed = self._datasets.pop(session_id, None) is not None
        if removed:
            logger.info(f"Discarded guest dataset ({len(self._datasets)} active)")
        return removed
