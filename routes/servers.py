# ─────────────────────────────────────────────────────────────────
# routes/servers.py — Servers and Deployments (JSON API)
#
# Write routes go through require_api_writer first: guests get
# 403 guest_forbidden, credentialed tenants must send their own
# access key in X-API-Key. Errors are raised as DashboardError and
# rendered by the handler in main.py as {"message", "code"}.
# ─────────────────────────────────────────────────────────────────

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from errors import InvalidRequest
from models import DeployRequest, ServerCreate
from routes.deps import get_deployments, get_session_id, get_sessions, require_api_writer
from sessions import SessionManager

logger = logging.getLogger("routes")

router = APIRouter(tags=["Servers"])


# ─────────────────────────────────────────────────────────────────
# POST /servers — Register a server
# ─────────────────────────────────────────────────────────────────

@router.post("/servers", status_code=201)
async def add_server(
    body: ServerCreate,
    session_id: str = Depends(require_api_writer),
    sessions: SessionManager = Depends(get_sessions),
):
    name = (body.name or "").strip()
    url = (body.url or "").strip()
    if not name or not url:
        raise InvalidRequest("Name and URL are required")

    store = await sessions.data_access(session_id, write=True)
    server = await store.add_server(name, url)

    logger.info(f"✅ Server registered: '{name}'")
    return {"message": "Server added", "server": server}


# ─────────────────────────────────────────────────────────────────
# DELETE /servers/{name} — Remove a server
# ─────────────────────────────────────────────────────────────────

@router.delete("/servers/{name}")
async def remove_server(
    name: str,
    session_id: str = Depends(require_api_writer),
    sessions: SessionManager = Depends(get_sessions),
):
    store = await sessions.data_access(session_id, write=True)
    server = await store.remove_server(name)

    logger.info(f"Server removed: '{name}'")
    return {"message": "Server removed", "server": server}


# ─────────────────────────────────────────────────────────────────
# POST /deploy — Trigger a deployment
# ─────────────────────────────────────────────────────────────────

@router.post("/deploy")
async def deploy(
    body: DeployRequest,
    session_id: str = Depends(require_api_writer),
    sessions: SessionManager = Depends(get_sessions),
    deployments=Depends(get_deployments),
):
    store = await sessions.data_access(session_id, write=True)
    deployment = await deployments.trigger(store, body.version)
    return {
        "message": "Deployment triggered",
        "id": deployment["id"],
        "status": deployment["status"],
        "version": deployment["version"],
    }


# ─────────────────────────────────────────────────────────────────
# GET /deployments — Deployment history, newest first
# ─────────────────────────────────────────────────────────────────

@router.get("/deployments")
async def list_deployments(
    session_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
):
    store = await sessions.data_access(session_id)
    return await store.list_deployments()
