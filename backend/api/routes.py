"""REST API routes for PeerDrop."""

import logging
import os

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from session.errors import (
    ChannelConnectionError,
    PeerDropError,
    RoomNotFoundError,
    SessionValidationError,
    TransferError,
)
from transfer.source import LocalFileSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_controller = None


def init_routes(controller) -> None:
    """Inject the session controller into the routes module."""
    global _controller
    _controller = controller


def _http_error(error: PeerDropError) -> HTTPException:
    if isinstance(error, SessionValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, RoomNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, TransferError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ChannelConnectionError):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


# --- Session ---

@router.get("/session")
async def get_session():
    """Return the active session and its transfer."""
    return _controller.info().model_dump(mode="json")


@router.post("/session")
async def create_session():
    """Open a new room as the sender."""
    try:
        token = await _controller.create_session()
    except PeerDropError as e:
        raise _http_error(e)
    return {"token": token, "session": _controller.info().model_dump(mode="json")}


class JoinBody(BaseModel):
    token: str


@router.post("/session/join")
async def join_session(body: JoinBody):
    """Join a room by its code as the receiver."""
    try:
        await _controller.join_session(body.token)
    except PeerDropError as e:
        raise _http_error(e)
    return _controller.info().model_dump(mode="json")


@router.post("/session/switch-role")
async def switch_role():
    role = await _controller.switch_role()
    return {"role": role.value}


# --- Sending ---

class SendBody(BaseModel):
    file_path: str


@router.post("/send")
async def send_file(body: SendBody):
    """Select a file on the host machine for sending.

    The backend reads the file directly from disk; it goes out as soon
    as a receiver is connected.
    """
    if not os.path.isfile(body.file_path):
        raise HTTPException(status_code=400, detail="No valid file selected")
    try:
        await _controller.select_file(LocalFileSource(body.file_path))
    except PeerDropError as e:
        raise _http_error(e)
    return {"message": f"Queued {os.path.basename(body.file_path)}"}


@router.post("/send/reset")
async def reset_file_selection():
    await _controller.reset_file_selection()
    return {"status": "reset"}


# --- Settings ---

class SettingsBody(BaseModel):
    save_dir: str | None = None


@router.get("/settings")
async def get_settings():
    return {"save_dir": _controller.save_dir}


@router.put("/settings")
async def update_settings(body: SettingsBody):
    if body.save_dir is not None:
        try:
            _controller.save_dir = body.save_dir
        except OSError as e:
            raise HTTPException(
                status_code=400, detail=f"Invalid directory: {e}"
            )
    return {"status": "updated"}
