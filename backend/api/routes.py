"""REST API routes for the relay (rendezvous broker)."""

import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request

from rendezvous.errors import (
    InvalidSessionIdError,
    SessionConflictError,
    SessionError,
    SessionNotFoundError,
)
from rendezvous.models import Session, is_valid_session_id
from rendezvous.registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


def get_registry(request: Request) -> SessionRegistry:
    """Return the registry owned by the running application."""
    return request.app.state.registry


def _raise_http_exception(exc: SessionError) -> NoReturn:
    if isinstance(exc, SessionNotFoundError):
        raise HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, SessionConflictError):
        raise HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, InvalidSessionIdError):
        raise HTTPException(status_code=400, detail=exc.message)
    raise HTTPException(status_code=500, detail="Unexpected session error")


def _validate(session_id: str) -> None:
    if not is_valid_session_id(session_id):
        _raise_http_exception(InvalidSessionIdError("Invalid session ID format"))


@router.get("/healthz")
async def healthz():
    return {"status": "ok"}


@router.api_route("/new", methods=["GET", "POST"], response_model=Session)
async def create_session(registry: SessionRegistry = Depends(get_registry)):
    """Create a session for a sender."""
    return registry.create()


# The path converter also catches "/join/" and "/join/a/b", so both get a 400.
@router.get("/join/{session_id:path}", response_model=Session)
async def join_session(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
):
    """Attach a receiver to a session."""
    _validate(session_id)
    try:
        return registry.join(session_id)
    except SessionError as e:
        logger.warning(f"Join {session_id} refused: {e}")
        _raise_http_exception(e)


@router.get("/leave/{session_id:path}", response_model=Session)
async def leave_session(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
):
    """Detach the receiver from a session."""
    _validate(session_id)
    try:
        return registry.leave(session_id)
    except SessionError as e:
        logger.warning(f"Leave {session_id} refused: {e}")
        _raise_http_exception(e)
