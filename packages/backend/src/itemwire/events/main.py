"""Change listener entry point — run as a separate process.

Learn: The listener is its own process, separate from the API server.
This provides crash isolation — if the listener dies, subscribers stay
connected and the HTTP events endpoint keeps working.

Usage:
    python -m itemwire.events.main

Or via the CLI:
    itemwire listen
"""

import asyncio
import signal

import httpx
import redis.asyncio as aioredis
import structlog

from itemwire.config import ConfigurationError, Settings, settings as default_settings
from itemwire.events.listener import ChangeFeedListener
from itemwire.services import build_services

logger = structlog.get_logger()


async def run(settings: Settings = default_settings) -> None:
    """Run the listener until interrupted."""
    settings.validate_required()
    if settings.transport != "connections_api":
        raise ConfigurationError(
            "The change listener holds no sockets; set "
            "ITEMWIRE_TRANSPORT=connections_api and ITEMWIRE_WS_ENDPOINT"
        )
    if settings.store_backend != "redis":
        raise ConfigurationError(
            "The change listener shares the registry with the API server; "
            "set ITEMWIRE_STORE_BACKEND=redis"
        )

    redis = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    http_client = httpx.AsyncClient(timeout=settings.send_timeout_seconds)
    services = build_services(settings, redis=redis, http_client=http_client)
    listener = ChangeFeedListener(redis, services.broadcaster, channel=settings.change_channel)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, listener.stop)

    logger.info(
        "listener.starting",
        channel=settings.change_channel,
        endpoint=settings.ws_endpoint,
        topic_key=settings.topic_key_name,
    )

    try:
        await listener.run()
    except asyncio.CancelledError:
        pass
    finally:
        await http_client.aclose()
        await redis.aclose()


def main():
    """CLI entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
