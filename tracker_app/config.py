"""
Process configuration from the environment (and an optional .env file).

    LOG_LEVEL                  DEBUG | INFO | WARN | WARNING | ERROR (default INFO)
    LOG_FILE                   rotating log file path (default: stdout only)
    CONNECTOR_TIMEOUT          per-request timeout in seconds (default 15)
    CONNECTOR_MIN_INTERVAL_MS  pacing interval override for every connector
    CONNECTOR_MAX_RETRIES      attempts on HTTP 429 (default 3)
    CONNECTOR_RETRY_AFTER_CAP  Retry-After cap in seconds (default 4)
    SITEMAP_CACHE_TTL          sitemap index lifetime in seconds (default 1800)
    CONNECTOR_USER_AGENT       browser User-Agent override
    CONNECTOR_IMPERSONATE      curl_cffi fallback for Cloudflare challenges (default on)
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from connectors.http_client import ClientSettings

LOG_LEVELS = {
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "WARN": "WARNING",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
}


def parse_log_level(raw: Optional[str]) -> str:
    """Map a LOG_LEVEL value to a logging level name; empty means INFO."""
    value = (raw or "").strip().upper()
    if not value:
        return "INFO"
    if value not in LOG_LEVELS:
        raise ValueError(f"invalid LOG_LEVEL '{raw}' (expected DEBUG, INFO, WARN or ERROR)")
    return LOG_LEVELS[value]


@dataclass
class Settings:
    log_level: str = "INFO"
    log_file: Optional[str] = None
    client: ClientSettings = field(default_factory=ClientSettings)


def load_config(env_file: Optional[str] = None) -> Settings:
    """
    Load .env (existing environment variables win) and build Settings.

    Raises:
        ValueError: LOG_LEVEL is set to an unknown level
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    return Settings(
        log_level=parse_log_level(os.environ.get("LOG_LEVEL")),
        log_file=os.environ.get("LOG_FILE", "").strip() or None,
        client=ClientSettings.from_env(),
    )
