import os
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    service_name: str = "networth-coach"
    environment: str = "dev"

    # Rate limiting (fixed window, per user)
    rate_limit_max_requests: int = Field(20, ge=1)
    rate_limit_window_ms: int = Field(60_000, ge=1)
    redis_url: Optional[str] = None       # In-memory store when unset

    # Tool-calling loop
    tool_loop_max_iterations: int = Field(6, ge=1)
    tool_loop_deadline_seconds: Optional[float] = 90.0
    provider_timeout_seconds: float = 60.0

    # Enrichment (best effort)
    enrichment_timeout_seconds: float = 5.0
    enrichment_max_workers: int = Field(8, ge=1)
    knowledge_limit: int = 3
    knowledge_min_similarity: float = 0.75

    # Default model when the request doesn't select one
    default_provider: str = "anthropic"
    default_model: str = "claude-sonnet-4-5-20250929"

    trace_capacity: int = 1000

    @property
    def rate_limit_window_seconds(self) -> float:
        """Convert the window to seconds."""
        return self.rate_limit_window_ms / 1000


def _env(name: str) -> Optional[str]:
    value = os.getenv(f"NETWORTH_{name}")
    return value if value not in (None, "") else None


def load_settings() -> Settings:
    """Build settings from NETWORTH_* environment variables.

    Unset variables keep the model defaults. REDIS_URL is read without the
    prefix so the service can share a Redis with other components.
    """
    overrides = {}
    for field_name in Settings.model_fields:
        raw = _env(field_name.upper())
        if raw is not None:
            overrides[field_name] = raw
    redis_url = _env("REDIS_URL") or os.getenv("REDIS_URL")
    if redis_url:
        overrides["redis_url"] = redis_url
    # pydantic coerces the string values to the declared field types
    return Settings(**overrides)


settings = load_settings()
