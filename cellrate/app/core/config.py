import json
import math
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Periods travel to Redis with six decimals; anything shorter would be sent as zero.
MIN_PERIOD_SECONDS = 1e-6


def _parse_overrides(raw: Any) -> dict[str, Any]:
    """Decode RATE_LIMIT_OVERRIDES into a ``key -> limit spec`` mapping.

    Each value is either an object with ``rate``/``burst``/``period`` or a
    shorthand string such as ``"10/m"``. Values are checked later when the
    limiter configuration is built; here only the outer shape is validated.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        parsed = raw
    else:
        raw = str(raw).strip()
        if not raw or raw == "{}":
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"rate_limit_overrides must be a JSON object: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("rate_limit_overrides must be a JSON object")

    overrides: dict[str, Any] = {}
    for key, value in parsed.items():
        if not isinstance(value, (dict, str)):
            raise ValueError(
                f"rate limit override for {key!r} must be an object or a 'rate/unit' string"
            )
        overrides[str(key)] = value
    return overrides


class Settings(BaseSettings):
    """Limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Redis settings
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 1.0  # Per-command timeout in seconds
    redis_connect_timeout: float = 1.0  # Time to establish connection

    # Store backend: redis (shared across instances) | memory (single process)
    rate_limit_backend: str = "redis"
    rate_limit_prefix: str = "rl:"

    # Default limit applied when no per-key override matches
    rate_limit_rate: int = 1
    rate_limit_burst: int = 1
    rate_limit_period_seconds: float = 1.0

    # Per-key overrides, e.g. {"tenant-a": {"rate": 100, "burst": 20, "period": 60}}
    rate_limit_overrides: Annotated[dict[str, Any], NoDecode] = {}

    # Deadline for a single decision round trip (None = no deadline)
    rate_limit_timeout: float | None = None

    # Bound on keys held by the in-memory store
    rate_limit_memory_max_keys: int = 10000

    # Key clients by the first X-Forwarded-For entry; enable only behind a trusted proxy
    rate_limit_trust_forwarded_for: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_overrides", mode="before")
    @classmethod
    def decode_overrides(cls, v: Any) -> dict[str, Any]:
        return _parse_overrides(v)

    @field_validator("rate_limit_rate", "rate_limit_burst", "rate_limit_memory_max_keys")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("redis_socket_timeout", "redis_connect_timeout")
    @classmethod
    def validate_seconds_positive(cls, v: float) -> float:
        """Validate durations are positive and finite."""
        if not math.isfinite(v) or v <= 0:
            raise ValueError("Duration values must be positive and finite")
        return v

    @field_validator("rate_limit_period_seconds")
    @classmethod
    def validate_period(cls, v: float) -> float:
        if not math.isfinite(v) or v < MIN_PERIOD_SECONDS:
            raise ValueError(f"rate_limit_period_seconds must be finite and at least {MIN_PERIOD_SECONDS}")
        return v

    @field_validator("rate_limit_timeout")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and (not math.isfinite(v) or v <= 0):
            raise ValueError("rate_limit_timeout must be positive and finite when set")
        return v

    @field_validator("rate_limit_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        backend = v.strip().lower()
        if backend not in ("redis", "memory"):
            raise ValueError("rate_limit_backend must be 'redis' or 'memory'")
        return backend

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.strip().lower()
        if fmt not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return fmt

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
