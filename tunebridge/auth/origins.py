"""
Goal: Allow-list of browser origins for the Spotify token endpoints.
Built from the addresses this server is reachable on; no Origin header means a same-origin/CLI call.
"""

from __future__ import annotations

import socket
from typing import FrozenSet, Optional


def get_local_ip() -> Optional[str]:
    """Best-effort LAN address (no packets are sent; UDP connect just picks a route)."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        return None


def allowed_origins(port: int, local_ip: Optional[str] = None) -> FrozenSet[str]:
    origins = {f"http://localhost:{port}", f"http://127.0.0.1:{port}"}
    if local_ip:
        origins.add(f"http://{local_ip}:{port}")
    return frozenset(origins)


def is_allowed_origin(origin: Optional[str], allowed: FrozenSet[str]) -> bool:
    if not origin:
        return True
    return origin in allowed
