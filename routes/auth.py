# ─────────────────────────────────────────────────────────────────
# routes/auth.py — Upload, Guest Mode and Logout
#
# Browser-facing: every outcome is a 303 redirect. Failures carry a
# short code (?error=no_file, ?error=missing_api_key,
# ?error=db_unreachable ...) and never the underlying message.
#
# Each successful activation issues a NEW session id. The previous
# session (if any) is only logged out once the new one is active,
# so a failed re-upload leaves the user exactly where they were.
# ─────────────────────────────────────────────────────────────────

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from errors import DashboardError, InvalidBundleError, NoFileError
from routes.deps import (
    get_session_id,
    get_sessions,
    get_settings,
    redirect,
    redirect_with_error,
    set_session_cookie,
)
from sessions import SessionManager, new_session_id

logger = logging.getLogger("routes")

router = APIRouter(tags=["Session"])


async def _read_upload(file: Optional[UploadFile], limit: int) -> bytes:
    if file is None or not file.filename:
        raise NoFileError()
    blob = await file.read(limit + 1)
    if len(blob) > limit:
        raise InvalidBundleError("Configuration file is too large")
    if not blob:
        raise NoFileError()
    return blob


# ─────────────────────────────────────────────────────────────────
# GET / — Landing page data
# ─────────────────────────────────────────────────────────────────

@router.get("/")
def root(error: Optional[str] = None, settings=Depends(get_settings)):
    return {
        "message": f"{settings.APP_NAME} is running",
        "upload": "POST /upload (multipart field 'file')",
        "guest": "POST /guest",
        "error": error,
    }


# ─────────────────────────────────────────────────────────────────
# POST /upload — Activate with a credential bundle
# ─────────────────────────────────────────────────────────────────

@router.post("/upload")
async def upload(
    file: Optional[UploadFile] = File(default=None),
    previous_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
    settings=Depends(get_settings),
):
    session_id = new_session_id()
    try:
        blob = await _read_upload(file, settings.MAX_UPLOAD_BYTES)
        await sessions.activate_credentialed(session_id, blob)
    except DashboardError as exc:
        logger.info(f"Activation failed: {exc.code}")
        return redirect_with_error("/", exc.code)

    if previous_id:
        await sessions.logout(previous_id)

    response = redirect("/dashboard")
    set_session_cookie(response, settings, session_id)
    return response


# ─────────────────────────────────────────────────────────────────
# POST /guest — Continue without credentials
# ─────────────────────────────────────────────────────────────────

@router.post("/guest")
async def guest(
    previous_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
    settings=Depends(get_settings),
):
    session_id = new_session_id()
    await sessions.activate_guest(session_id)

    if previous_id:
        await sessions.logout(previous_id)

    response = redirect("/dashboard")
    set_session_cookie(response, settings, session_id)
    return response


# ─────────────────────────────────────────────────────────────────
# POST /logout
# ─────────────────────────────────────────────────────────────────

@router.post("/logout")
async def logout(
    session_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
    settings=Depends(get_settings),
):
    await sessions.logout(session_id)
    response = redirect("/")
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return response
