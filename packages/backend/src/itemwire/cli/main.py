"""itemwire CLI — run the server and listener, publish changes, inspect subscriptions.

Usage:
    itemwire serve                                   # API + /ws endpoint (uvicorn)
    itemwire listen                                  # Redis change-feed listener
    itemwire publish vehicleId=V1 speed=42           # POST a change to the API
    itemwire publish --redis '{"vehicleId": "V1"}'   # PUBLISH on the change channel
    itemwire subscriptions --item V1                 # Who is listening
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("ITEMWIRE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the itemwire server."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def parse_attributes(args: tuple[str, ...]) -> dict:
    """Turn CLI args into an attribute dict.

    Accepts a single JSON object, or key=value pairs (values that parse
    as JSON — numbers, booleans — keep their type).
    """
    if len(args) == 1 and args[0].lstrip().startswith("{"):
        attributes = json.loads(args[0])
        if not isinstance(attributes, dict):
            raise click.BadParameter("expected a JSON object")
        return attributes

    attributes = {}
    for arg in args:
        key, sep, raw = arg.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {arg!r}")
        try:
            attributes[key] = json.loads(raw)
        except json.JSONDecodeError:
            attributes[key] = raw
    return attributes


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


_STATUS_COLORS = {
    "sent": "green",
    "no_recipients": "yellow",
    "malformed_event": "red",
}


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="itemwire")
def main():
    """itemwire — real-time item change notifications over WebSockets."""


# ---------------------------------------------------------------------------
# itemwire serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: ITEMWIRE_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: ITEMWIRE_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server and WebSocket endpoint."""
    import uvicorn

    from itemwire.config import settings

    uvicorn.run(
        "itemwire.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# itemwire listen
# ---------------------------------------------------------------------------


@main.command()
def listen():
    """Run the Redis change-feed listener (separate process)."""
    from itemwire.config import ConfigurationError
    from itemwire.events.main import run as run_listener

    try:
        _run(run_listener())
    except ConfigurationError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# itemwire publish
# ---------------------------------------------------------------------------


@main.command()
@click.argument("attributes", nargs=-1, required=True)
@click.option("--redis", "via_redis", is_flag=True,
              help="PUBLISH on the change channel instead of POSTing to the API")
def publish(attributes: tuple[str, ...], via_redis: bool):
    """Publish a created/updated item.

    ATTRIBUTES is a JSON object or key=value pairs.
    """
    attrs = parse_attributes(attributes)
    if via_redis:
        _run(_publish_redis(attrs))
    else:
        _run(_publish_http(attrs))


async def _publish_http(attributes: dict):
    async with _client() as c:
        r = await c.post("/api/v1/events", json={"attributes": attributes})
        if r.status_code >= 400:
            click.secho(f"Broadcast failed ({r.status_code}): {r.text}", fg="red", err=True)
            sys.exit(1)
        report = r.json()

    status = report["status"]
    click.secho(status, fg=_STATUS_COLORS.get(status, "white"), bold=True)
    if status == "sent":
        click.echo(
            f"Delivered to {report['delivered']} of {report['recipients']} "
            f"subscribers ({len(report['evicted'])} stale evicted)"
        )


async def _publish_redis(attributes: dict):
    import redis.asyncio as aioredis

    from itemwire.config import settings

    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        listeners = await r.publish(settings.change_channel, json.dumps(attributes))
    finally:
        await r.aclose()
    click.echo(f"Published to {settings.change_channel} ({listeners} listener(s))")


# ---------------------------------------------------------------------------
# itemwire subscriptions
# ---------------------------------------------------------------------------


@main.command()
@click.option("--item", "-i", "topic_value", help="Only subscriptions for this item id")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def subscriptions(topic_value: Optional[str], as_json: bool):
    """List current subscriptions."""
    _run(_subscriptions_impl(topic_value, as_json))


async def _subscriptions_impl(topic_value: Optional[str], as_json: bool):
    params = {"topic_value": topic_value} if topic_value else {}
    async with _client() as c:
        r = await c.get("/api/v1/subscriptions", params=params)
        r.raise_for_status()
        rows = r.json()

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        click.echo("No subscriptions.")
        return
    _print_table(rows, [
        ("CONNECTION", "connection_id", 34),
        ("KEY", "topic_key", 16),
        ("ITEM", "topic_value", 24),
        ("EXPIRES", "expires_at", 12),
    ])


if __name__ == "__main__":
    main()
