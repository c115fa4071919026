"""Relay configuration with environment variable support."""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelayConfig(BaseSettings):
    """Relay configuration with environment variable support.

    All settings can be overridden via environment variables with HOOKRELAY_ prefix.
    Example: HOOKRELAY_PORT=9090 overrides the port setting.
    """

    model_config = SettingsConfigDict(
        env_prefix="HOOKRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server binding
    host: str = Field(
        default="0.0.0.0",
        description="Host to bind the relay to",
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port to bind the relay to",
    )

    # Sandbox environment
    dispatch_port: int = Field(
        default=9000,
        ge=1,
        le=65535,
        description="Port the webhook binary listens on inside the sandbox",
    )
    webhook_version: str = Field(
        default="2.8.1",
        min_length=1,
        description="Release of adnanh/webhook installed into the template",
    )
    base_image: str = Field(
        default="ubuntu:24.04",
        min_length=1,
        description="Base image of the sandbox template",
    )
    image_name: str = Field(
        default="hookrelay-webhook",
        min_length=1,
        description="Repository name for built template images",
    )

    # Timeouts
    tunnel_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Max time to wait for a sandbox to become reachable",
    )
    relay_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Connect/write/pool timeout when forwarding",
    )
    relay_read_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Read timeout when forwarding (hooks may run long commands)",
    )

    log_level: str = Field(
        default="INFO",
        description="Minimum log level",
    )
