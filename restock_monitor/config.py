"""Configuration loader.

Reads environment variables and `.env` to configure the monitoring engine.
Nothing in the engine imports this module directly; `main` wires these
values into the scheduler, fetchers and senders.
"""

from __future__ import annotations

import os
from typing import List, Optional
from pathlib import Path

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


def _get_list(name: str, default: str = "") -> list[str]:
    raw = _get_env(name, default) or ""
    return [s.strip() for s in raw.split(",") if s.strip()]


# ---- Storage & logging -------------------------------------------------------

# Path to SQLite database.
SQLITE_DB_PATH: str = _get_env("SQLITE_DB_PATH", "monitor.db")

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")

# Insert the built-in region list on first start.
SEED_DEFAULT_REGIONS: bool = _parse_bool(_get_env("SEED_DEFAULT_REGIONS", "true"), True)

# ---- Scheduling --------------------------------------------------------------

# Seconds between periodic scan cycles.
SCAN_INTERVAL_SECONDS: int = _parse_int(_get_env("SCAN_INTERVAL_SECONDS", "30"), 30)

# Pause between two regions of the same cycle (rate limiting).
INTER_REGION_DELAY_SECONDS: float = _parse_float(_get_env("INTER_REGION_DELAY_SECONDS", "2"), 2.0)

# ---- Fetching ----------------------------------------------------------------

# "http" (requests + BeautifulSoup) or "browser" (Playwright, needs the extra).
FETCHER_BACKEND: str = (_get_env("FETCHER_BACKEND", "http") or "http").strip().lower()

FETCH_TIMEOUT_SECONDS: float = _parse_float(_get_env("FETCH_TIMEOUT_SECONDS", "30"), 30.0)
BROWSER_TIMEOUT_MS: int = _parse_int(_get_env("BROWSER_TIMEOUT_MS", "60000"), 60000)

# ---- Scan log ----------------------------------------------------------------

# Store a JSON snapshot of the scraped items with every successful scan.
SCAN_LOG_SNAPSHOTS: bool = _parse_bool(_get_env("SCAN_LOG_SNAPSHOTS", "true"), True)

# Upper bound for "recent scan logs" queries.
SCAN_LOG_QUERY_LIMIT: int = _parse_int(_get_env("SCAN_LOG_QUERY_LIMIT", "100"), 100)

# ---- Notifications -----------------------------------------------------------

# Channels used for users without an explicit channel preference.
DEFAULT_CHANNELS: List[str] = _get_list("DEFAULT_CHANNELS", "email")

# Discord webhook URL used by the "push" channel.
DISCORD_WEBHOOK_URL: Optional[str] = _get_env("DISCORD_WEBHOOK_URL")

# Whether to upload images to Discord as attachments (most reliable).
DISCORD_ATTACH_IMAGES: bool = _parse_bool(_get_env("DISCORD_ATTACH_IMAGES", "false"))

EMAIL_ENABLED: bool = _parse_bool(_get_env("EMAIL_ENABLED", "false"), False)
EMAIL_SMTP_HOST: str = _get_env("EMAIL_SMTP_HOST", "smtp.gmail.com")
EMAIL_SMTP_PORT: int = _parse_int(_get_env("EMAIL_SMTP_PORT", "587"), 587)  # 587 (TLS) or 465 (SSL)
EMAIL_USE_TLS: bool = _parse_bool(_get_env("EMAIL_USE_TLS", "true"), True)
EMAIL_USERNAME: str | None = _get_env("EMAIL_USERNAME")
EMAIL_PASSWORD: str | None = _get_env("EMAIL_PASSWORD")  # app password if using Gmail
EMAIL_FROM: str | None = _get_env("EMAIL_FROM")
EMAIL_SUBJECT_PREFIX: str = _get_env("EMAIL_SUBJECT_PREFIX", "[Restock]")

_KNOWN_BACKENDS = ("http", "browser")
_KNOWN_CHANNELS = ("email", "push")


# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate configuration parameters that would break the engine at runtime."""
    if FETCHER_BACKEND not in _KNOWN_BACKENDS:
        raise RuntimeError(
            f"FETCHER_BACKEND must be one of {', '.join(_KNOWN_BACKENDS)} (got {FETCHER_BACKEND!r})"
        )
    if SCAN_INTERVAL_SECONDS <= 0:
        raise RuntimeError("SCAN_INTERVAL_SECONDS must be a positive number of seconds.")
    unknown = [c for c in DEFAULT_CHANNELS if c not in _KNOWN_CHANNELS]
    if unknown:
        raise RuntimeError(f"Unknown notification channel(s) in DEFAULT_CHANNELS: {', '.join(unknown)}")
    if EMAIL_ENABLED and not all((EMAIL_USERNAME, EMAIL_PASSWORD, EMAIL_FROM)):
        raise RuntimeError(
            "EMAIL_ENABLED requires EMAIL_USERNAME, EMAIL_PASSWORD and EMAIL_FROM. See .env.example for details."
        )


__all__ = [
    # Storage & logging
    "SQLITE_DB_PATH",
    "LOG_LEVEL",
    "SEED_DEFAULT_REGIONS",
    # Scheduling
    "SCAN_INTERVAL_SECONDS",
    "INTER_REGION_DELAY_SECONDS",
    # Fetching
    "FETCHER_BACKEND",
    "FETCH_TIMEOUT_SECONDS",
    "BROWSER_TIMEOUT_MS",
    # Scan log
    "SCAN_LOG_SNAPSHOTS",
    "SCAN_LOG_QUERY_LIMIT",
    # Notifications
    "DEFAULT_CHANNELS",
    "DISCORD_WEBHOOK_URL",
    "DISCORD_ATTACH_IMAGES",
    "EMAIL_ENABLED", "EMAIL_SMTP_HOST", "EMAIL_SMTP_PORT", "EMAIL_USE_TLS",
    "EMAIL_USERNAME", "EMAIL_PASSWORD", "EMAIL_FROM", "EMAIL_SUBJECT_PREFIX",
    # Helpers
    "validate",
]
