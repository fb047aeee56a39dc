"""CLI entrypoint for Kennisbank."""

from __future__ import annotations

import json
import mimetypes
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="kennisbank", help="Kennisbank command-line interface")
sources_app = typer.Typer(name="sources", help="Manage website and file sources")
app.add_typer(sources_app, name="sources")

DEFAULT_HOST = "http://127.0.0.1:8000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("KNB_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=60, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _print(resp: requests.Response) -> None:
    typer.echo(json.dumps(resp.json(), indent=2))


@sources_app.command("list")
def list_sources(
    assistant: Optional[str] = typer.Option(None, "--assistant", help="Only sources of this assistant"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List registered sources."""
    params = {"assistant_id": assistant} if assistant else None
    _print(_request("GET", "/sources", host=host, params=params))


@sources_app.command("add")
def add_source(
    assistant: str = typer.Option(..., "--assistant", help="Owning assistant id"),
    url: Optional[str] = typer.Option(None, "--url", help="Website seed URL"),
    file_source: bool = typer.Option(False, "--file", help="Register a file source instead of a website"),
    name: Optional[str] = typer.Option(None, "--name", help="Friendly name"),
    allow: list[str] = typer.Option([], "--allow", help="Extra allowed domain (repeatable)"),
    sync: str = typer.Option("never", "--sync", help="never, daily, weekly or monthly"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Register a website or file source."""
    if not file_source and not url:
        typer.echo("--url is required for website sources", err=True)
        raise typer.Exit(code=2)
    payload = {
        "assistant_id": assistant,
        "kind": "file" if file_source else "website",
        "name": name,
        "url": url,
        "allowed_domains": allow,
        "sync_interval": sync,
    }
    _print(_request("POST", "/sources", host=host, json=payload))


@sources_app.command("remove")
def remove_source(
    source_id: str = typer.Argument(..., help="Source identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Remove a source with its pages, documents and chunks."""
    _request("DELETE", f"/sources/{source_id}", host=host)
    typer.echo(json.dumps({"status": "ok"}))


@app.command()
def crawl(
    source_id: str = typer.Argument(..., help="Website source identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Start a background crawl of a website source."""
    _print(_request("POST", f"/sources/{source_id}/crawl", host=host))


@app.command()
def upload(
    source_id: str = typer.Argument(..., help="Source identifier"),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to ingest"),
    mime_type: Optional[str] = typer.Option(None, "--mime", help="Override detected MIME type"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Upload one document and ingest it."""
    mime = mime_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    with path.expanduser().open("rb") as handle:
        files = {"file": (path.name, handle, mime)}
        _print(_request("POST", f"/sources/{source_id}/documents", host=host, files=files))


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    assistant: Optional[str] = typer.Option(None, "--assistant", help="Restrict to one assistant"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Number of results to return"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Minimum similarity"),
    hybrid: bool = typer.Option(False, "--hybrid", help="Blend semantic and keyword scores"),
    weight: Optional[float] = typer.Option(None, "--weight", help="Semantic weight for hybrid search"),
    source: list[str] = typer.Option([], "--source", help="Restrict to a source (repeatable)"),
    doc_type: list[str] = typer.Option([], "--type", help="URL, PDF, DOCX or TXT (repeatable)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Query the knowledge base."""
    payload: dict[str, object] = {"query": q, "mode": "hybrid" if hybrid else "semantic"}
    if assistant:
        payload["assistant_id"] = assistant
    if limit is not None:
        payload["limit"] = limit
    if threshold is not None:
        payload["threshold"] = threshold
    if weight is not None:
        payload["semantic_weight"] = weight
    if source or doc_type:
        payload["filters"] = {
            "source_ids": source or None,
            "document_types": [value.upper() for value in doc_type] or None,
        }
    _print(_request("POST", "/search", host=host, json=payload))


@app.command()
def related(
    chunk_id: str = typer.Argument(..., help="Chunk identifier"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Number of results to return"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Minimum similarity"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Find chunks similar to a stored chunk."""
    params: dict[str, object] = {}
    if limit is not None:
        params["limit"] = limit
    if threshold is not None:
        params["threshold"] = threshold
    _print(_request("GET", f"/chunks/{chunk_id}/related", host=host, params=params))


@app.command()
def sync(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Crawl every website source whose sync interval has elapsed."""
    _print(_request("POST", "/sync", host=host))


@app.command()
def serve(
    bind: str = typer.Option("127.0.0.1", "--bind", help="Interface to listen on"),
    port: int = typer.Option(8000, "--port", help="Port to listen on"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("kennisbank.app:app", host=bind, port=port)


if __name__ == "__main__":
    app()
