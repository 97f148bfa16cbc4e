"""
Goal: Centralized configuration for the token bridge (host, port, vendor, token lifetimes).
Everything comes from env vars so the same build can serve any of the three vendors.
"""

import os
import re
from pathlib import Path


def _validate_port(port_str: str, default: int) -> int:
    """Validate port number is in valid range."""
    try:
        port = int(port_str)
        if 1024 <= port <= 65535:
            return port
    except ValueError:
        pass
    return default


def _validate_host(host_str: str, default: str) -> str:
    """Validate host is localhost, a private IP or the any-address."""
    if not host_str:
        return default

    allowed_hosts = {"127.0.0.1", "localhost", "::1", "0.0.0.0"}
    if host_str in allowed_hosts:
        return host_str

    # Private IP ranges only; this server hands out bearer tokens
    if re.match(r"^192\.168\.\d{1,3}\.\d{1,3}$", host_str) or \
       re.match(r"^10\.\d{1,3}\.\d{1,3}\.\d{1,3}$", host_str) or \
       re.match(r"^172\.(1[6-9]|2[0-9]|3[0-1])\.\d{1,3}\.\d{1,3}$", host_str):
        return host_str

    return default


def _positive_int(value: str, default: int) -> int:
    try:
        n = int(value)
        return n if n > 0 else default
    except ValueError:
        return default


def _fraction(value: str, default: float) -> float:
    try:
        f = float(value)
        return f if 0.0 < f < 1.0 else default
    except ValueError:
        return default


VENDORS = ("apple", "spotify", "youtube")


def _validate_vendor(value: str, default: str) -> str:
    value = (value or "").strip().lower()
    return value if value in VENDORS else default


# Where logs go. Credentials never touch disk, only log files do.
APP_DIR = Path(os.getenv("TB_HOME") or str(Path.home() / ".tunebridge"))
LOG_DIR = APP_DIR / "logs"

TB_PORT = _validate_port(os.getenv("TB_PORT", "3000"), 3000)
TB_HOST = _validate_host(os.getenv("TB_HOST", "127.0.0.1"), "127.0.0.1")
TB_VENDOR = _validate_vendor(os.getenv("TB_VENDOR", "apple"), "apple")

# Apple /api/token: long-lived proxy token, re-signed once it is within the buffer of expiry
PROXY_TOKEN_LIFETIME = _positive_int(os.getenv("TB_PROXY_TOKEN_LIFETIME", "86400"), 86400)
PROXY_TOKEN_BUFFER = _positive_int(os.getenv("TB_PROXY_TOKEN_BUFFER", "3600"), 3600)

# Apple sessions: 1 hour tokens, lookahead generation at 80% of lifetime
SESSION_TOKEN_LIFETIME = _positive_int(os.getenv("TB_SESSION_TOKEN_LIFETIME", "3600"), 3600)
ROTATION_THRESHOLD = _fraction(os.getenv("TB_ROTATION_THRESHOLD", "0.8"), 0.8)
SESSION_CLEANUP_INTERVAL = _positive_int(os.getenv("TB_SESSION_CLEANUP_INTERVAL", "300"), 300)

# Client rotation controller: poll every minute, rotate when under two polls of lifetime left
POLL_INTERVAL = _positive_int(os.getenv("TB_POLL_INTERVAL", "60"), 60)

# OAuth redirect targets (must match what is registered with the vendor)
YOUTUBE_REDIRECT = f"http://localhost:{TB_PORT}/api/auth/callback"
SPOTIFY_REDIRECT = f"http://127.0.0.1:{TB_PORT}/callback"
