"""
Goal: YouTube (Google OAuth) with the whole session held server-side.
The refresh token never leaves this process; the browser only gets short-lived access tokens.
"""

from __future__ import annotations

from typing import Any, Dict
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger

from tunebridge.api.state import ServerState, get_state
from tunebridge.errors import CredentialsMissing, TokenExchangeFailed
from tunebridge.models.schemas import GoogleCredentials
from tunebridge.models.token import to_iso

router = APIRouter(prefix="/api/auth", tags=["youtube"])

OAUTH_BASE = "https://accounts.google.com/o/oauth2/v2/auth"
SCOPES = (
    "https://www.googleapis.com/auth/youtube.readonly",
    "https://www.googleapis.com/auth/youtube.force-ssl",
)


def _redirect(query: str = "") -> RedirectResponse:
    return RedirectResponse(f"/{query}", status_code=302)


def _error_redirect(error: str) -> RedirectResponse:
    return _redirect("?" + urlencode({"error": error}))


@router.get("/session")
async def session(state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    tokens = state.user_tokens.get()
    if tokens is not None and state.user_tokens.is_authorized(state.clock()):
        return {
            "authorized": True,
            "accessToken": tokens.access_token,
            "expiresAt": to_iso(tokens.expires_at),
        }
    return {"authorized": False}


@router.get("/login")
async def login(state: ServerState = Depends(get_state)):
    creds = state.store.get_credentials()
    if not isinstance(creds, GoogleCredentials):
        raise CredentialsMissing()

    params = {
        "client_id": creds.client_id,
        "redirect_uri": state.redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state.user_tokens.begin_login(),
    }
    return RedirectResponse(f"{OAUTH_BASE}?{urlencode(params)}", status_code=302)


@router.get("/callback")
async def callback(request: Request, state: ServerState = Depends(get_state)):
    params = request.query_params
    error = params.get("error")
    if error:
        return _error_redirect(error)

    code = params.get("code")
    if not code or not state.store.has_credentials():
        return _error_redirect("invalid_callback")

    if not state.user_tokens.consume_state(params.get("state")):
        logger.warning("YouTube callback state mismatch; login abandoned")
        return _error_redirect("state_mismatch")

    generation = state.user_tokens.generation
    try:
        tokens = await state.oauth_client().exchange_code(code, state.redirect_uri)
    except TokenExchangeFailed:
        return _error_redirect("token_exchange_failed")
    except Exception:  # noqa: BLE001
        logger.exception("OAuth callback error")
        return _error_redirect("callback_error")

    if not state.user_tokens.store(tokens, generation):
        logger.warning("Credentials cleared during YouTube login; tokens discarded")
        return _error_redirect("callback_error")
    logger.info("YouTube account linked")
    return _redirect()


@router.post("/refresh")
async def refresh(state: ServerState = Depends(get_state)):
    refresh_token = state.user_tokens.refresh_token
    if not state.store.has_credentials() or not refresh_token:
        return JSONResponse({"error": "No refresh token"}, status_code=401)

    generation = state.user_tokens.generation
    try:
        tokens = await state.oauth_client().refresh(refresh_token)
    except TokenExchangeFailed:
        return JSONResponse({"error": "Refresh failed"}, status_code=401)
    except Exception:  # noqa: BLE001
        logger.exception("YouTube token refresh error")
        return JSONResponse({"error": "Refresh failed"}, status_code=500)

    if not state.user_tokens.store(tokens, generation):
        logger.warning("Credentials cleared during YouTube refresh; tokens discarded")
        return JSONResponse({"error": "Refresh failed"}, status_code=401)
    return {"accessToken": tokens.access_token, "expiresAt": to_iso(tokens.expires_at)}


@router.post("/logout")
async def logout(state: ServerState = Depends(get_state)) -> Dict[str, Any]:
    state.user_tokens.clear()
    return {"success": True}
