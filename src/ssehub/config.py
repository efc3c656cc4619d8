"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with SSEHUB_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: the keepalive interval has to stay strictly below the idle timeout
of every proxy between us and the browser, otherwise quiet streams get
cut. The validator below enforces that against the configured proxy
timeout so a bad deploy fails at startup instead of in production.
"""

import uuid

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via SSEHUB_* env vars."""

    # Auth (tokens are minted by the platform; we only verify them)
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Event stream
    keepalive_interval_seconds: float = 15.0
    proxy_idle_timeout_seconds: float = 60.0  # nginx proxy_read_timeout etc.
    queue_max_size: int = Field(256, ge=0)  # 0 = unbounded
    client_retry_ms: int = 3000  # sent as the SSE "retry:" field

    # Backplane ("local" = single process, "redis" = multi-instance fan-out)
    backplane: str = "local"
    redis_url: str = "redis://localhost:6379/0"
    backplane_channel: str = "ssehub:messages"
    backplane_publish_timeout: float = 1.0
    backplane_reconnect_delay: float = 2.0
    instance_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])

    model_config = {"env_prefix": "SSEHUB_"}

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Ensure sensitive defaults are changed in non-development environments."""
        if (
            self.environment != "development"
            and self.jwt_secret == "change-me-in-production"
        ):
            raise ValueError(
                "SSEHUB_JWT_SECRET must be set to a secure value in "
                "non-development environments. Generate one with: "
                'python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        return self

    @model_validator(mode="after")
    def validate_stream_settings(self):
        """Keepalives must fire well inside the intermediary idle timeout."""
        if self.keepalive_interval_seconds <= 0:
            raise ValueError("SSEHUB_KEEPALIVE_INTERVAL_SECONDS must be positive")
        if self.keepalive_interval_seconds >= self.proxy_idle_timeout_seconds:
            raise ValueError(
                "SSEHUB_KEEPALIVE_INTERVAL_SECONDS must be shorter than "
                "SSEHUB_PROXY_IDLE_TIMEOUT_SECONDS"
            )
        if self.backplane not in ("local", "redis"):
            raise ValueError("SSEHUB_BACKPLANE must be 'local' or 'redis'")
        return self


# Singleton — import this everywhere
settings = Settings()
