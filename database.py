# ─────────────────────────────────────────────────────────────────
# database.py — Tenant Data Storage
#
# This file owns all data storage for the dashboard. Everything
# that reads or writes servers, health logs or deployments goes
# through the TenantStore interface, so the rest of the project
# never needs to know WHICH store a session resolved to:
#
#   MemoryStore       → in-process dicts (guest datasets, tests)
#   MongoTenantStore  → a tenant's own MongoDB database
#
# MongoConnection is the handle the connection registry caches per
# session: one MongoDB client, its liveness check, and its store.
# ─────────────────────────────────────────────────────────────────

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from pymongo import AsyncMongoClient, DESCENDING, ReturnDocument
from pymongo.errors import ConfigurationError, DuplicateKeyError, PyMongoError

from credentials import redact_address
from errors import StoreConnectionError, TargetConflict, TargetNotFound
from models import DeploymentStatus, ServerStatus

logger = logging.getLogger("database")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantStore(ABC):
    """The data-access interface shared by guest and credentialed sessions."""

    # ── servers ──────────────────────────────────────────────────

    @abstractmethod
    async def list_servers(self) -> list:
        ...

    @abstractmethod
    async def get_server(self, name: str):
        ...

    @abstractmethod
    async def add_server(self, name: str, url: str) -> dict:
        """Raises TargetConflict when the name is already registered."""

    @abstractmethod
    async def remove_server(self, name: str) -> dict:
        """Raises TargetNotFound when no server has this name."""

    @abstractmethod
    async def set_server_status(self, name: str, status: str):
        """Silently ignores servers removed since they were listed."""

    # ── health logs ──────────────────────────────────────────────

    @abstractmethod
    async def append_log(self, statuses: dict, timestamp: datetime = None) -> dict:
        ...

    @abstractmethod
    async def list_logs(self) -> list:
        """Newest first, ordered by the timestamp assigned at write time."""

    @abstractmethod
    async def clear_logs(self) -> int:
        ...

    # ── deployments ──────────────────────────────────────────────

    @abstractmethod
    async def add_deployment(self, version: str, status: str) -> dict:
        ...

    @abstractmethod
    async def update_deployment(self, deployment_id: str, status: str):
        ...

    @abstractmethod
    async def list_deployments(self) -> list:
        """Newest first."""


def _new_deployment(version: str, status: str) -> dict:
    return {
        "id": uuid.uuid4().hex,
        "version": version,
        "status": DeploymentStatus(status).value,
        "timestamp": utcnow(),
    }


# ─────────────────────────────────────────────────────────────────
# In-memory store
# ─────────────────────────────────────────────────────────────────

class MemoryStore(TenantStore):
    """
    Keeps one tenant's data in plain dicts.

    Records handed out are deep copies, so a caller editing a returned
    dict can never reach into the store (or into another session's).
    """

    def __init__(self, servers=None, logs=None, deployments=None):
        self._servers = {server["name"]: copy.deepcopy(server) for server in servers or []}
        self._logs = [copy.deepcopy(entry) for entry in logs or []]
        self._deployments = {item["id"]: copy.deepcopy(item) for item in deployments or []}
        self._lock = asyncio.Lock()

    async def list_servers(self) -> list:
        async with self._lock:
            return copy.deepcopy(list(self._servers.values()))

    async def get_server(self, name: str):
        async with self._lock:
            return copy.deepcopy(self._servers.get(name))

    async def add_server(self, name: str, url: str) -> dict:
        async with self._lock:
            if name in self._servers:
                raise TargetConflict()
            server = {"name": name, "url": url, "status": ServerStatus.UNKNOWN.value}
            self._servers[name] = server
            return copy.deepcopy(server)

    async def remove_server(self, name: str) -> dict:
        async with self._lock:
            if name not in self._servers:
                raise TargetNotFound()
            return self._servers.pop(name)

    async def set_server_status(self, name: str, status: str):
        async with self._lock:
            if name in self._servers:
                self._servers[name]["status"] = status

    async def append_log(self, statuses: dict, timestamp: datetime = None) -> dict:
        entry = {"timestamp": timestamp or utcnow(), "statuses": copy.deepcopy(statuses)}
        async with self._lock:
            self._logs.append(entry)
            return copy.deepcopy(entry)

    async def list_logs(self) -> list:
        async with self._lock:
            logs = copy.deepcopy(self._logs)
        return sorted(logs, key=lambda entry: entry["timestamp"], reverse=True)

    async def clear_logs(self) -> int:
        async with self._lock:
            removed = len(self._logs)
            self._logs.clear()
            return removed

    async def add_deployment(self, version: str, status: str) -> dict:
        deployment = _new_deployment(version, status)
        async with self._lock:
            self._deployments[deployment["id"]] = deployment
            return copy.deepcopy(deployment)

    async def update_deployment(self, deployment_id: str, status: str):
        async with self._lock:
            deployment = self._deployments.get(deployment_id)
            if deployment is None:
                return None
            deployment["status"] = DeploymentStatus(status).value
            return copy.deepcopy(deployment)

    async def list_deployments(self) -> list:
        async with self._lock:
            deployments = copy.deepcopy(list(self._deployments.values()))
        return sorted(deployments, key=lambda item: item["timestamp"], reverse=True)


# ─────────────────────────────────────────────────────────────────
# MongoDB store
# ─────────────────────────────────────────────────────────────────

class MongoTenantStore(TenantStore):
    """
    One tenant's data in their own MongoDB database.

    Collections: servers (unique on name), logs, deployments.
    Mongo's _id is never returned; records have the same keys as
    MemoryStore records.
    """

    def __init__(self, db):
        self._servers = db["servers"]
        self._logs = db["logs"]
        self._deployments = db["deployments"]

    async def ensure_indexes(self):
        await self._servers.create_index("name", unique=True)
        await self._logs.create_index([("timestamp", DESCENDING)])

    async def list_servers(self) -> list:
        return await self._servers.find({}, {"_id": 0}).to_list(length=None)

    async def get_server(self, name: str):
        return await self._servers.find_one({"name": name}, {"_id": 0})

    async def add_server(self, name: str, url: str) -> dict:
        server = {"name": name, "url": url, "status": ServerStatus.UNKNOWN.value}
        try:
            # insert_one adds _id to the dict it is given
            await self._servers.insert_one(dict(server))
        except DuplicateKeyError as exc:
            raise TargetConflict() from exc
        return server

    async def remove_server(self, name: str) -> dict:
        server = await self._servers.find_one_and_delete({"name": name}, projection={"_id": 0})
        if server is None:
            raise TargetNotFound()
        return server

    async def set_server_status(self, name: str, status: str):
        await self._servers.update_one({"name": name}, {"$set": {"status": status}})

    async def append_log(self, statuses: dict, timestamp: datetime = None) -> dict:
        entry = {"timestamp": timestamp or utcnow(), "statuses": statuses}
        await self._logs.insert_one(dict(entry))
        return entry

    async def list_logs(self) -> list:
        cursor = self._logs.find({}, {"_id": 0}).sort("timestamp", DESCENDING)
        return await cursor.to_list(length=None)

    async def clear_logs(self) -> int:
        result = await self._logs.delete_many({})
        return result.deleted_count

    async def add_deployment(self, version: str, status: str) -> dict:
        deployment = _new_deployment(version, status)
        await self._deployments.insert_one(dict(deployment))
        return deployment

    async def update_deployment(self, deployment_id: str, status: str):
        return await self._deployments.find_one_and_update(
            {"id": deployment_id},
            {"$set": {"status": DeploymentStatus(status).value}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def list_deployments(self) -> list:
        cursor = self._deployments.find({}, {"_id": 0}).sort("timestamp", DESCENDING)
        return await cursor.to_list(length=None)


class MongoConnection:
    """
    A live connection to one tenant's MongoDB, as cached by the
    ConnectionRegistry. Liveness = the server answers "ping" within
    the timeout and the handle has not been closed.
    """

    def __init__(self, client, database_name: str, ping_timeout: float):
        self._client = client
        self._ping_timeout = ping_timeout
        self.closed = False
        self.store = MongoTenantStore(client[database_name])

    async def ping(self) -> bool:
        if self.closed:
            return False
        try:
            await asyncio.wait_for(self._client.admin.command("ping"), self._ping_timeout)
        except (PyMongoError, asyncio.TimeoutError) as exc:
            logger.debug(f"Ping failed: {type(exc).__name__}")
            return False
        return True

    async def close(self):
        if self.closed:
            return
        self.closed = True
        await self._client.close()


async def open_mongo_connection(address: str, timeout: float, default_database: str) -> MongoConnection:
    """
    Connects to a tenant's MongoDB and proves the connection works
    (ping + index creation) before handing it out.

    Any failure, including a malformed URI, raises StoreConnectionError.
    """

    timeout_ms = int(timeout * 1000)
    try:
        client = AsyncMongoClient(
            address,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            tz_aware=True,
        )
        database_name = client.get_default_database(default=default_database).name
    except (ConfigurationError, ValueError, TypeError) as exc:
        logger.warning(f"Rejected backing-store address {redact_address(address)}: {type(exc).__name__}")
        raise StoreConnectionError() from exc

    connection = MongoConnection(client, database_name, timeout)
    # the client must be closed on every way out, including cancellation
    # by the registry's connect timeout
    try:
        if not await connection.ping():
            logger.warning(f"Backing store unreachable: {redact_address(address)}")
            raise StoreConnectionError()

        try:
            await connection.store.ensure_indexes()
        except PyMongoError as exc:
            logger.warning(f"Backing store rejected index setup: {type(exc).__name__}")
            raise StoreConnectionError() from exc
    except BaseException:
        await connection.close()
        raise

    return connection
