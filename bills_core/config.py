# =============================================================================
# bills_core/config.py
# Configuration for the Bill Tracker sync core
# =============================================================================
"""
Runtime settings.

Values are resolved in three layers, later layers winning:

1. dataclass defaults below
2. a TOML file (``BILLS_CONFIG_FILE``, default ``config/bills.toml``)
3. environment variables (a local ``.env`` file is loaded first)

Expected TOML layout:

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [retry]
    max_attempts = 3
    backoff_factor = 1.5

    [reconnect]
    max_reconnect_attempts = 5
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import toml
from dotenv import load_dotenv

from bills_core.errors import ConfigurationError
from bills_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("config") / "bills.toml"


@dataclass
class SupabaseSettings:
    """Remote backend connection."""
    url: str = ""
    key: str = ""
    table: str = "accounts"

    @property
    def configured(self) -> bool:
        return bool(self.url and self.key)


@dataclass
class RetryPolicy:
    """Gateway retry/backoff policy. ``max_attempts`` counts the first call."""
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_factor: float = 1.5
    backoff_max_seconds: float = 10.0
    request_timeout_seconds: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.backoff_base_seconds * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.backoff_max_seconds)


@dataclass
class ReconnectPolicy:
    """Connectivity monitor probing and reconnection schedule."""
    probe_timeout_seconds: float = 5.0
    failure_threshold: int = 3
    reconnect_base_interval_seconds: float = 5.0
    reconnect_multiplier: float = 1.5
    reconnect_max_interval_seconds: float = 60.0
    max_reconnect_attempts: int = 5
    health_check_interval_seconds: float = 30.0

    def interval_for(self, attempt: int) -> float:
        """Wait before reconnection attempt number ``attempt`` (1-based)."""
        interval = self.reconnect_base_interval_seconds * (
            self.reconnect_multiplier ** (attempt - 1)
        )
        return min(interval, self.reconnect_max_interval_seconds)


@dataclass
class CachePolicy:
    """Local cache location and limits."""
    directory: str = "local_data/cache"
    capacity_bytes: int = 5 * 1024 * 1024
    accounts_ttl_seconds: Optional[float] = None


@dataclass
class SweepPolicy:
    """Best-effort status update queue used by the daily sweep."""
    max_attempts: int = 2
    drain_interval_seconds: float = 5.0


@dataclass
class Settings:
    supabase: SupabaseSettings = field(default_factory=SupabaseSettings)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    cache: CachePolicy = field(default_factory=CachePolicy)
    sweep: SweepPolicy = field(default_factory=SweepPolicy)


# Environment variable -> (section, attribute)
ENV_OVERRIDES = {
    "SUPABASE_URL": ("supabase", "url"),
    "SUPABASE_KEY": ("supabase", "key"),
    "SUPABASE_TABLE": ("supabase", "table"),
    "BILLS_MAX_ATTEMPTS": ("retry", "max_attempts"),
    "BILLS_BACKOFF_BASE_SECONDS": ("retry", "backoff_base_seconds"),
    "BILLS_BACKOFF_FACTOR": ("retry", "backoff_factor"),
    "BILLS_REQUEST_TIMEOUT_SECONDS": ("retry", "request_timeout_seconds"),
    "BILLS_PROBE_TIMEOUT_SECONDS": ("reconnect", "probe_timeout_seconds"),
    "BILLS_FAILURE_THRESHOLD": ("reconnect", "failure_threshold"),
    "BILLS_MAX_RECONNECT_ATTEMPTS": ("reconnect", "max_reconnect_attempts"),
    "BILLS_CACHE_DIR": ("cache", "directory"),
    "BILLS_CACHE_CAPACITY_BYTES": ("cache", "capacity_bytes"),
}


def _coerce(section: Any, name: str, raw: Any) -> Any:
    """Convert ``raw`` to the type of the dataclass default."""
    current = getattr(section, name)
    if raw is None or current is None:
        return raw
    try:
        if isinstance(current, bool):
            return str(raw).lower() in ("1", "true", "yes", "on")
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            config_key=name,
            expected_type=type(current).__name__,
        ) from e
    return raw


def _apply_section(section: Any, values: Dict[str, Any], section_name: str) -> None:
    known = {f.name for f in fields(section)}
    for name, raw in values.items():
        if name not in known:
            logger.warning(f"Ignoring unknown setting {section_name}.{name}")
            continue
        setattr(section, name, _coerce(section, name, raw))


def load_settings(config_file: Optional[Path] = None, env_file: Optional[str] = None) -> Settings:
    """
    Build settings from defaults, the TOML file and the environment.

    Raises:
        ConfigurationError: If the TOML file is unreadable or a value has the wrong type
    """
    load_dotenv(env_file)
    settings = Settings()

    path = Path(config_file or os.getenv("BILLS_CONFIG_FILE", DEFAULT_CONFIG_FILE))
    if path.exists():
        try:
            data = toml.load(path)
        except (toml.TomlDecodeError, OSError) as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}", config_key=str(path)) from e

        for section_name, values in data.items():
            section = getattr(settings, section_name, None)
            if not is_dataclass(section) or not isinstance(values, dict):
                logger.warning(f"Ignoring unknown config section [{section_name}]")
                continue
            _apply_section(section, values, section_name)
        logger.debug(f"Loaded settings from {path}")

    for env_name, (section_name, attr) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is not None and raw != "":
            section = getattr(settings, section_name)
            setattr(section, attr, _coerce(section, attr, raw))

    return settings


# Singleton accessor
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests, config reload)."""
    global _settings
    _settings = None
