"""Environment-driven configuration for the tracker service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

PROVIDERS = ("openai", "placeholder")


@dataclass(frozen=True)
class TrackerConfig:
    """Runtime settings read from the environment (and `.env` if present)."""

    image_provider: str = "placeholder"
    openai_api_key: Optional[str] = None
    openai_image_model: str = "gpt-image-1"
    task_timeout_seconds: float = 120.0
    max_concurrent_tasks: int = 4
    history_limit: int = 50
    session_ttl_seconds: float = 86400.0
    database_dir: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TrackerConfig":
        """Build a config from `environ` (defaults to `os.environ` after loading `.env`).

        Raises:
            RuntimeError: If a numeric setting is malformed or the provider is unknown.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        api_key = (environ.get("OPENAI_API_KEY") or "").strip() or None
        default_provider = "openai" if api_key else "placeholder"
        provider = (environ.get("IMAGE_PROVIDER") or default_provider).strip().lower()
        if provider not in PROVIDERS:
            raise RuntimeError(f"IMAGE_PROVIDER must be one of {', '.join(PROVIDERS)}, got {provider!r}")

        return cls(
            image_provider=provider,
            openai_api_key=api_key,
            openai_image_model=(environ.get("OPENAI_IMAGE_MODEL") or "gpt-image-1").strip(),
            task_timeout_seconds=_positive(environ, "TASK_TIMEOUT_SECONDS", 120.0, float),
            max_concurrent_tasks=int(_positive(environ, "MAX_CONCURRENT_TASKS", 4, int)),
            history_limit=int(_positive(environ, "HISTORY_LIMIT", 50, int)),
            session_ttl_seconds=_positive(environ, "SESSION_TTL", 86400.0, float),
            database_dir=(environ.get("DATABASE_DIR") or "").strip() or None,
            log_level=(environ.get("LOG_LEVEL") or "INFO").strip().upper(),
        )


def _positive(environ: Mapping[str, str], key: str, default: float, cast) -> float:
    raw = environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{key} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{key} must be positive, got {raw!r}")
    return value
