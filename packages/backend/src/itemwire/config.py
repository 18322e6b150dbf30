"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with ITEMWIRE_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: pydantic validates the shape of each value (enums, ints) at load
time. Values that have no sane default (the topic key name) are checked
separately by validate_required(), which the API lifespan and the change
listener call before serving anything — missing config is a startup
failure, never a per-request one.
"""

from typing import Literal

from pydantic_settings import BaseSettings

ENV_PREFIX = "ITEMWIRE_"


class ConfigurationError(Exception):
    """Required configuration is missing."""


class Settings(BaseSettings):
    """All app configuration. Set via ITEMWIRE_* env vars."""

    # Subscriptions
    topic_key_name: str = ""  # required: attribute subscribers filter on
    carrier_mode: Literal["header", "query_param"] = "query_param"
    ttl_seconds: int = 3600  # 1h

    # Registry storage
    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"

    # Delivery
    transport: Literal["local", "connections_api"] = "local"
    ws_endpoint: str = ""  # required for the connections_api transport
    send_timeout_seconds: float = 10.0

    # Change feed (Redis pub/sub)
    change_channel: str = "itemwire:changes"

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_prefix": ENV_PREFIX}

    def missing_required(self) -> list[str]:
        """Env var names of required settings that are unset."""
        missing = []
        if not self.topic_key_name:
            missing.append(f"{ENV_PREFIX}TOPIC_KEY_NAME")
        if self.transport == "connections_api" and not self.ws_endpoint:
            missing.append(f"{ENV_PREFIX}WS_ENDPOINT")
        return missing

    def validate_required(self) -> None:
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Required environment variables not set: {', '.join(missing)}"
            )


# Singleton — import this everywhere
settings = Settings()
