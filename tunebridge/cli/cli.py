r"""
Goal: Small typed CLI for a running TuneBridge server.

- Export `app` (tests import this).
- Show "TuneBridge CLI" in --help output.
- `serve` runs the server in-process; everything else talks HTTP to TB_URL.
- Credentials go in over HTTP like the browser form does; the CLI never stores them.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import typer

from tunebridge import settings

app = typer.Typer(
    help="TuneBridge CLI",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _base_url() -> str:
    return os.getenv("TB_URL", f"http://127.0.0.1:{settings.TB_PORT}")


def _request(
    method: str, path: str, payload: Optional[Dict[str, Any]] = None, timeout: float = 10.0
) -> httpx.Response:
    """Send one request to the server; a connection problem prints `{"ok": false}` and exits 1."""
    try:
        with httpx.Client(timeout=timeout) as c:
            return c.request(method, f"{_base_url()}{path}", json=payload)
    except httpx.HTTPError as e:
        typer.echo(json.dumps({"ok": False, "error": f"{method} {path}: {e}"}, indent=2))
        raise typer.Exit(1)


def _get(path: str) -> httpx.Response:
    return _request("GET", path)


def _post(path: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
    return _request("POST", path, payload or {}, timeout=15.0)


def _delete(path: str) -> httpx.Response:
    return _request("DELETE", path)


def _echo(r: httpx.Response) -> None:
    try:
        data: Any = r.json()
    except ValueError:
        data = {"status": r.status_code, "body": r.text}
    typer.echo(json.dumps(data, indent=2))
    if r.status_code >= 400:
        raise typer.Exit(1)


@app.callback(help="TuneBridge CLI")
def _root_callback() -> None:  # noqa: D401 - short help callback
    """Root callback for the CLI."""
    return None


# -----------------------
# Server
# -----------------------
@app.command("serve")
def serve(
    vendor: str = typer.Option(settings.TB_VENDOR, help="apple, spotify or youtube"),
    host: str = typer.Option(settings.TB_HOST),
    port: int = typer.Option(settings.TB_PORT),
) -> None:
    if vendor not in settings.VENDORS:
        typer.echo(f"unknown vendor: {vendor}")
        raise typer.Exit(2)
    from tunebridge.main import main as run_server

    run_server(vendor=vendor, host=host, port=port)


@app.command("health")
def health() -> None:
    _echo(_get("/health"))


@app.command("token")
def token() -> None:
    """Fetch the Apple developer token (proxy token) from the server."""
    _echo(_get("/api/token"))


# -----------------------
# Credentials
# -----------------------
credentials = typer.Typer(help="Configure the vendor app credentials held by the server")
app.add_typer(credentials, name="credentials")


@credentials.command("show")
def credentials_show() -> None:
    _echo(_get("/api/credentials"))


@credentials.command("clear")
def credentials_clear() -> None:
    _echo(_delete("/api/credentials"))


@credentials.command("apple")
def credentials_apple(
    team_id: str = typer.Option(..., "--team-id"),
    key_id: str = typer.Option(..., "--key-id"),
    key_file: Path = typer.Option(..., "--key-file", exists=True, dir_okay=False, help="Path to the .p8 key"),
) -> None:
    private_key = key_file.read_text(encoding="utf-8")
    _echo(_post("/api/credentials", {"teamId": team_id, "keyId": key_id, "privateKey": private_key}))


@credentials.command("spotify")
def credentials_spotify(
    client_id: str = typer.Option(..., "--client-id"),
    client_secret: str = typer.Option(..., "--client-secret", prompt=True, hide_input=True),
) -> None:
    _echo(_post("/api/credentials", {"clientId": client_id, "clientSecret": client_secret}))


@credentials.command("youtube")
def credentials_youtube(
    client_id: str = typer.Option(..., "--client-id"),
    client_secret: str = typer.Option(..., "--client-secret", prompt=True, hide_input=True),
    api_key: str = typer.Option(..., "--api-key"),
) -> None:
    _echo(
        _post("/api/credentials", {"clientId": client_id, "clientSecret": client_secret, "apiKey": api_key})
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
