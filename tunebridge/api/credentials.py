"""
Goal: /api/credentials for every vendor. Secrets go in, only a `configured` flag comes out.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from tunebridge.api.state import ServerState, get_state
from tunebridge.errors import InvalidRequest
from tunebridge.models.schemas import SpotifyCredentials, parse_credentials

router = APIRouter(prefix="/api/credentials", tags=["credentials"])


async def read_json(request: Request) -> Any:
    """Parse the body ourselves so malformed JSON is a 400 like everything else."""
    try:
        return await request.json()
    except ValueError:
        raise InvalidRequest("Invalid request") from None


@router.post("")
async def set_credentials(request: Request, state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    bundle = parse_credentials(state.vendor, await read_json(request))
    state.store.set_credentials(bundle)
    return {"success": True}


@router.get("")
async def get_credentials(state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    out: Dict[str, Any] = {"configured": state.store.has_credentials()}
    if state.vendor == "spotify":
        creds = state.store.get_credentials()
        # The client id is public (it is in the authorize URL anyway)
        out["clientId"] = creds.client_id if isinstance(creds, SpotifyCredentials) else None
    return out


@router.delete("")
async def clear_credentials(state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    state.store.clear_credentials()
    return {"success": True}
