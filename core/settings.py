"""Runtime settings loaded from the environment.

Values come from environment variables, optionally seeded from a ``.env``
file at the repository root:

- LOYALTY_API_BASE_URL: Loyalty/material catalog API (products, departments)
- CARD_DATA_API_URL: Card/serial data endpoint
- UPSTREAM_TIMEOUT_SECONDS: Timeout for loyalty API calls (default 5)
- CARD_DATA_TIMEOUT_SECONDS: Timeout for card data calls (default 10)
- UPSTREAM_CONCURRENCY: Concurrent upstream calls per batch (default 5)
- ORDER_EXPORT_PATH: Directory of exported order data (orders, movements, ...)
- ARTIFACTS_PATH: Directory for payload/report artifacts
- TASK_QUEUE: Temporal task queue (default "invoice-build")
- LOG_LEVEL: Logging level name (default INFO)
- LOG_JSON: "1"/"true" for JSON logs
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class Settings:
    loyalty_api_base_url: Optional[str] = None
    card_data_api_url: Optional[str] = None
    upstream_timeout_seconds: float = 5.0
    card_data_timeout_seconds: float = 10.0
    upstream_concurrency: int = 5
    order_export_path: Optional[Path] = None
    artifacts_path: Path = REPO_ROOT / "artifacts"
    task_queue: str = "invoice-build"
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the environment.

        Raises:
            ValueError: If a numeric setting cannot be parsed or is not positive
        """
        concurrency = _env_int("UPSTREAM_CONCURRENCY", 5)
        if concurrency < 1:
            raise ValueError("UPSTREAM_CONCURRENCY must be at least 1")

        artifacts = os.getenv("ARTIFACTS_PATH")
        export = os.getenv("ORDER_EXPORT_PATH")
        return cls(
            loyalty_api_base_url=os.getenv("LOYALTY_API_BASE_URL") or None,
            card_data_api_url=os.getenv("CARD_DATA_API_URL") or None,
            upstream_timeout_seconds=_env_float("UPSTREAM_TIMEOUT_SECONDS", 5.0),
            card_data_timeout_seconds=_env_float("CARD_DATA_TIMEOUT_SECONDS", 10.0),
            upstream_concurrency=concurrency,
            order_export_path=Path(export) if export else None,
            artifacts_path=Path(artifacts) if artifacts else REPO_ROOT / "artifacts",
            task_queue=os.getenv("TASK_QUEUE", "invoice-build"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read once."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
