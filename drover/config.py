"""Single source of truth for all configuration and secrets.

All modules import from here — never from os.environ directly.

Values come from secrets/internal.env (or the SOPS-encrypted
secrets/internal.env.enc when DROVER_USE_SOPS=true), overlaid by process
environment variables of the same name.
"""

import logging
import os
import subprocess
from collections.abc import Mapping
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("DROVER_USE_SOPS", "false").lower() == "true"


class ConfigurationError(ValueError):
    """Raised at startup when required configuration is missing or invalid."""


def read_env_file(path: Path, *, encrypted: bool = False) -> dict[str, str | None]:
    """Read dotenv key-value pairs, decrypting with SOPS when ``encrypted``.

    A missing plain file yields no values: the service is usually configured
    through its process environment (systemd unit, container). A missing or
    undecryptable encrypted file is a configuration error.
    """
    if not path.exists():
        if encrypted:
            raise ConfigurationError(f"Encrypted secrets file not found: {path}")
        logger.debug("Dotenv file not found, using environment only: %s", path)
        return {}
    if not encrypted:
        return dict(dotenv_values(path))

    try:
        result = subprocess.run(
            ["sops", "--decrypt", "--input-type", "dotenv", "--output-type", "dotenv", str(path)],
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError:
        raise ConfigurationError("DROVER_USE_SOPS=true but the sops binary is not installed") from None
    except subprocess.CalledProcessError as exc:
        raise ConfigurationError(f"SOPS could not decrypt {path}: {exc.stderr.strip()}") from exc
    return dict(dotenv_values(stream=StringIO(result.stdout)))


def _load(scope: str) -> dict[str, str | None]:
    """Load the values for a scope, then overlay the environment."""
    suffix = ".env.enc" if USE_SOPS else ".env"
    values = read_env_file(PROJECT_ROOT / "secrets" / f"{scope}{suffix}", encrypted=USE_SOPS)
    overrides = {key: os.environ[key] for key in values.keys() | _KNOWN_KEYS if key in os.environ}
    return {**values, **overrides}


def _bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_number(values: Mapping[str, str | None], key: str, default: str, cast=float):
    """Read a positive number, raising ConfigurationError if malformed."""
    raw = values.get(key) or default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {raw!r}")
    return value


_KNOWN_KEYS = {
    "INGEST_BASE_URL",
    "INGEST_TRANS_MODE",
    "INGEST_TIMEOUT",
    "WATCH_CONFIG_URL",
    "WATCH_CONFIG_IDS",
    "WATCH_FOLDERS_FILE",
    "WATCH_FILE_PATTERNS",
    "WATCH_CHECK_DUPLICATES",
    "WATCH_REFRESH_SECONDS",
    "WATCH_DEBOUNCE_SECONDS",
    "WATCH_WORKERS",
    "WATCH_QUEUE_SIZE",
    "NOTIFY_DUMP_DIR",
    "NOTIFY_HTTP_URL",
    "LOG_DIR",
}

_internal = _load("internal")

# --- Remote ingestion endpoint ---
INGEST_BASE_URL: str = _internal.get("INGEST_BASE_URL") or ""
INGEST_TRANS_MODE: str = _internal.get("INGEST_TRANS_MODE") or "GPRS"
INGEST_TIMEOUT: float = parse_number(_internal, "INGEST_TIMEOUT", "30")

# --- Watch configuration source (remote URL wins over local file) ---
WATCH_CONFIG_URL: str = _internal.get("WATCH_CONFIG_URL") or ""
WATCH_CONFIG_IDS: str = _internal.get("WATCH_CONFIG_IDS") or ""
WATCH_FOLDERS_FILE: str = _internal.get("WATCH_FOLDERS_FILE") or str(
    PROJECT_ROOT / "data" / "watched_folders.json"
)

# --- Pipeline tuning ---
WATCH_FILE_PATTERNS: str = _internal.get("WATCH_FILE_PATTERNS") or "*.txt,*.csv"
WATCH_CHECK_DUPLICATES: bool = _bool(_internal.get("WATCH_CHECK_DUPLICATES"), True)
WATCH_REFRESH_SECONDS: float = parse_number(_internal, "WATCH_REFRESH_SECONDS", "300")
WATCH_DEBOUNCE_SECONDS: float = parse_number(_internal, "WATCH_DEBOUNCE_SECONDS", "2.0")
WATCH_WORKERS: int = parse_number(_internal, "WATCH_WORKERS", "4", int)
WATCH_QUEUE_SIZE: int = parse_number(_internal, "WATCH_QUEUE_SIZE", "100", int)

# --- Notifications, logs ---
NOTIFY_DUMP_DIR: str = _internal.get("NOTIFY_DUMP_DIR") or str(PROJECT_ROOT / "data" / "notifications")
NOTIFY_HTTP_URL: str = _internal.get("NOTIFY_HTTP_URL") or ""
LOG_DIR: str = _internal.get("LOG_DIR") or ""


def parse_list(value: str) -> list[str]:
    """Split a comma-separated config value into trimmed, non-empty items."""
    return [item.strip() for item in value.split(",") if item.strip()]
