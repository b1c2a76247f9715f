"""CLI entrypoint for Message Search."""

from __future__ import annotations

import json
import os
from typing import Optional

import requests
import typer

app = typer.Typer(name="msgs", help="Message Search command-line interface")

DEFAULT_HOST = "http://127.0.0.1:5180"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("MSGS_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _resolve_token(override: Optional[str]) -> str:
    token = override or os.environ.get("MSGS_TOKEN")
    if not token:
        typer.echo("An API token is required (--token or MSGS_TOKEN)", err=True)
        raise typer.Exit(code=2)
    return token


def _request(
    method: str,
    path: str,
    host: Optional[str] = None,
    token: Optional[str] = None,
    **kwargs,
) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    headers = {"Authorization": f"Bearer {_resolve_token(token)}"}
    resp = requests.request(method, url, timeout=60, headers=headers, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


@app.command()
def sync(
    source: str = typer.Argument("linkedin", help="Source to sync"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
    token: Optional[str] = typer.Option(None, "--token", help="API token"),
) -> None:
    """Start a background sync run."""
    resp = _request("POST", f"/sync/{source}", host=host, token=token)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def status(
    source: Optional[str] = typer.Argument(None, help="Source; omit to list every source"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
    token: Optional[str] = typer.Option(None, "--token", help="API token"),
) -> None:
    """Show sync state."""
    path = f"/sync/{source}" if source else "/sync"
    resp = _request("GET", path, host=host, token=token)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def cancel(
    source: str = typer.Argument("linkedin", help="Source whose run should stop"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
    token: Optional[str] = typer.Option(None, "--token", help="API token"),
) -> None:
    """Stop a running sync after the current message."""
    resp = _request("POST", f"/sync/{source}/cancel", host=host, token=token)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    k: Optional[int] = typer.Option(None, "--k", help="Number of results to return"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Minimum similarity"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
    token: Optional[str] = typer.Option(None, "--token", help="API token"),
) -> None:
    """Search your messages."""
    payload: dict[str, object] = {"query": q}
    if k is not None:
        payload["k"] = k
    if threshold is not None:
        payload["threshold"] = threshold
    resp = _request("POST", "/search", host=host, token=token, json=payload)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()
