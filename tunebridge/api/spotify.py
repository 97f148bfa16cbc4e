"""
Goal: Spotify PKCE helper endpoints.
- The browser holds the code_verifier; we hold the client secret.
- /callback bounces the code back to the SPA, which then calls /api/token/exchange with its verifier.
- /api/token/* are origin-checked (see the middleware in main.py).
"""

from __future__ import annotations

from typing import Any, Dict
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from loguru import logger

from tunebridge.api.credentials import read_json
from tunebridge.api.state import ServerState, get_state
from tunebridge.errors import CredentialsMissing, TokenExchangeFailed, TuneBridgeError
from tunebridge.models.schemas import CodeExchangeRequest, RefreshRequest, parse_body

router = APIRouter(tags=["spotify"])

# Paths the origin guard protects
ORIGIN_CHECKED_PATHS = frozenset({"/api/token/exchange", "/api/token/refresh"})


@router.get("/callback")
async def callback(request: Request):
    params = request.query_params
    error = params.get("error")
    if error:
        return RedirectResponse(f"/?{urlencode({'auth_error': error})}", status_code=302)

    code = params.get("code")
    state = params.get("state")
    if not code or not state:
        return RedirectResponse("/?auth_error=missing_params", status_code=302)

    # The verifier lives in the browser; hand the code back so the SPA can finish the exchange
    return RedirectResponse(f"/?{urlencode({'auth_code': code, 'auth_state': state})}", status_code=302)


@router.post("/api/token/exchange")
async def exchange(request: Request, state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    if not state.store.has_credentials():
        raise CredentialsMissing()
    body = parse_body(CodeExchangeRequest, await read_json(request))
    try:
        tokens = await state.oauth_client().exchange_code(
            body.code, body.redirect_uri, code_verifier=body.code_verifier
        )
    except TuneBridgeError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("spotify token exchange error")
        raise TokenExchangeFailed() from exc
    logger.info("Spotify code exchanged (scope: {})", tokens.scope or "-")
    return tokens.to_dict()


@router.post("/api/token/refresh")
async def refresh(request: Request, state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    if not state.store.has_credentials():
        raise CredentialsMissing()
    body = parse_body(RefreshRequest, await read_json(request))
    try:
        tokens = await state.oauth_client().refresh(body.refresh_token)
    except TuneBridgeError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("spotify token refresh error")
        raise TokenExchangeFailed("Token refresh failed") from exc
    logger.info("Spotify access token refreshed")
    return tokens.to_dict()
