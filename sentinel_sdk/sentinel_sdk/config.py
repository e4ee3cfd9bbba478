"""
Configuration for the LogSentinel shipper.

Values come from (lowest to highest precedence):
1. Defaults on SentinelConfig
2. A sentinel.yaml / sentinel.json file
3. LOGSENTINEL_* environment variables
4. Keyword overrides passed by the host application

Environment Variables:
    LOGSENTINEL_API_KEY: Bearer credential for the collector (required)
    LOGSENTINEL_BASE_URL: Collector base URL (required)
    LOGSENTINEL_BATCH_SIZE: Records per flush threshold (default 5)
    LOGSENTINEL_DEBUG: "true" enables verbose diagnostics
    LOGSENTINEL_FLUSH_INTERVAL_MS: Periodic flush check interval
    LOGSENTINEL_HTTP_TIMEOUT_MS: Per-attempt HTTP timeout
    LOGSENTINEL_SHUTDOWN_GRACE_MS: Final flush grace period
    LOGSENTINEL_CONFIG: Path to a config file
"""

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml


BATCH_SIZE = 5
FLUSH_INTERVAL_MS = 5000  # Backup timer for partial batches
HTTP_TIMEOUT_MS = 10000
MAX_RETRIES = 3
RETRY_DELAY_MS = 1000
MAX_LOG_FIELD_SIZE_BYTES = 10240  # 10KB per field
SHUTDOWN_GRACE_PERIOD_MS = 5000

LOGS_PATH = "/api/sdk/logs"
CONFIG_FILENAMES = ("sentinel.yaml", "sentinel.yml", "sentinel.json")


class ConfigurationError(ValueError):
    """Raised when required settings are missing or malformed."""


@dataclass(frozen=True)
class SentinelConfig:
    """Settings consumed by the buffer, transport and scheduler."""
    api_key: str = ""
    base_url: str = ""
    batch_size: int = BATCH_SIZE
    debug: bool = False
    flush_interval_ms: int = FLUSH_INTERVAL_MS
    http_timeout_ms: int = HTTP_TIMEOUT_MS
    max_retries: int = MAX_RETRIES
    retry_delay_ms: int = RETRY_DELAY_MS
    shutdown_grace_period_ms: int = SHUTDOWN_GRACE_PERIOD_MS
    max_field_size_bytes: int = MAX_LOG_FIELD_SIZE_BYTES

    @property
    def endpoint(self) -> str:
        """Full URL records are POSTed to."""
        return f"{self.base_url}{LOGS_PATH}"

    def validate(self) -> "SentinelConfig":
        """
        Check required settings and return a normalized copy.

        The API key is stripped and any trailing slash is removed from
        the base URL.

        Raises:
            ConfigurationError: If a setting is missing or out of range
        """
        api_key = (self.api_key or "").strip()
        if not api_key:
            raise ConfigurationError("api_key is required")

        base_url = (self.base_url or "").strip()
        if not base_url:
            raise ConfigurationError("base_url is required")

        parsed = urlparse(base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"base_url must be an absolute http(s) URL, got {base_url!r}")

        for name in ("batch_size", "flush_interval_ms", "http_timeout_ms", "shutdown_grace_period_ms",
                     "max_field_size_bytes"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        for name in ("max_retries", "retry_delay_ms"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")

        return replace(self, api_key=api_key, base_url=base_url.rstrip("/"))

    def merged(self, **overrides: Any) -> "SentinelConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        """Settings as a dict, with the API key masked."""
        data = asdict(self)
        if data["api_key"]:
            data["api_key"] = data["api_key"][:4] + "****"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentinelConfig":
        """Build a config from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, base: Optional["SentinelConfig"] = None) -> "SentinelConfig":
        """
        Create config from LOGSENTINEL_* environment variables.

        Args:
            base: Config whose values are used where a variable is unset

        Returns:
            SentinelConfig (not yet validated)
        """
        base = base or cls()
        env = os.environ

        batch_size = _int_env("LOGSENTINEL_BATCH_SIZE", base.batch_size)
        if batch_size < 1:
            batch_size = BATCH_SIZE

        debug = base.debug
        if "LOGSENTINEL_DEBUG" in env:
            debug = env["LOGSENTINEL_DEBUG"].strip().lower() == "true"

        return replace(
            base,
            api_key=env.get("LOGSENTINEL_API_KEY", base.api_key),
            base_url=env.get("LOGSENTINEL_BASE_URL", base.base_url),
            batch_size=batch_size,
            debug=debug,
            flush_interval_ms=_int_env("LOGSENTINEL_FLUSH_INTERVAL_MS", base.flush_interval_ms),
            http_timeout_ms=_int_env("LOGSENTINEL_HTTP_TIMEOUT_MS", base.http_timeout_ms),
            shutdown_grace_period_ms=_int_env("LOGSENTINEL_SHUTDOWN_GRACE_MS", base.shutdown_grace_period_ms),
        )


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_config(config_path: Optional[str] = None) -> SentinelConfig:
    """
    Load configuration from file and environment.

    Search order for the file:
    1. Provided config_path
    2. LOGSENTINEL_CONFIG environment variable
    3. sentinel.yaml (or .yml/.json) in the current directory
    4. The same names in parent directories (walk up the tree)

    A missing file is not an error; environment variables alone are
    enough. Environment variables override file values.

    Args:
        config_path: Optional explicit path to config file

    Returns:
        SentinelConfig (not yet validated)

    Raises:
        ConfigurationError: If a config file exists but cannot be parsed
    """
    path = config_path or os.environ.get("LOGSENTINEL_CONFIG")
    if path is None:
        found = _find_config_file(Path.cwd())
        path = str(found) if found else None

    base = _load_from_path(path) if path else SentinelConfig()
    return SentinelConfig.from_env(base)


def _find_config_file(start: Path) -> Optional[Path]:
    current = start
    while True:
        for name in CONFIG_FILENAMES:
            candidate = current / name
            if candidate.exists():
                return candidate

        # Stop at filesystem root
        if current == current.parent:
            return None
        current = current.parent


def _load_from_path(path: str) -> SentinelConfig:
    """Load config from a specific path"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read config file {path}: {e}") from e

    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    # Allow the settings to live under a top-level "logsentinel" key
    section = data.get("logsentinel", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"'logsentinel' section in {path} must be a mapping")
    return SentinelConfig.from_dict(section)
