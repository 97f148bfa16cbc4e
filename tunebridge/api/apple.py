"""
Goal: Apple Music token endpoints.
- /api/token: the app-wide developer token (cached, re-signed near expiry).
- /api/sessions: per-session tokens with lookahead rotation for hitless player swaps.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tunebridge.api.state import ServerState, get_state

router = APIRouter(prefix="/api", tags=["apple"])


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "Session not found"}, status_code=404)


@router.get("/token")
async def developer_token(state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    token = state.cache.get_or_issue(state.proxy_lifetime, state.proxy_buffer)
    return token.to_dict()


@router.post("/sessions", status_code=201)
async def create_session(state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    session = state.sessions.create_session()
    return state.sessions.session_info(session)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, state: ServerState = Depends(get_state)):
    session = state.sessions.get_session(session_id)
    if session is None:
        return _not_found()
    return state.sessions.session_info(session)


@router.post("/sessions/{session_id}/rotate")
async def rotate_session(session_id: str, state: ServerState = Depends(get_state)):
    session = state.sessions.rotate_session(session_id)
    if session is None:
        return _not_found()
    return state.sessions.session_info(session)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    return {"success": state.sessions.delete_session(session_id)}
