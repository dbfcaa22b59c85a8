"""
Configuration for the LubeLogger sync engine.

Settings come from three places, in increasing precedence:
built-in defaults, ~/.lubelogger/settings.yaml, and (for the transport)
LUBELOGGER_* environment variables.

```yaml
api:
  base_url: "https://demo.lubelogger.com"
  api_version: ""
  timeout_seconds: 30
  max_retries: 3
  base_retry_delay_ms: 1000
  enable_throttling: true
  enable_circuit_breaker: true
  circuit_breaker_failure_threshold: 5
  circuit_breaker_reset_timeout_minutes: 1
sync:
  auto_sync_interval_seconds: 900
  event_buffer_size: 256
  refresh_empty_types: true
  conflict_journal_path: "~/.lubelogger/conflicts.jsonl"
cache:
  - entity_type_name: Vehicle
    expiration_minutes: 1440
    is_critical: true
    sync_priority: 1
logging:
  level: INFO
  structured: true
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

DEFAULT_BASE_URL = "https://demo.lubelogger.com"
DEFAULT_SETTINGS_PATH = Path.home() / ".lubelogger" / "settings.yaml"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", source="env") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", source="env") from e


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


@dataclass
class TransportConfig:
    """Configuration for the resilient HTTP transport."""

    base_url: str = DEFAULT_BASE_URL
    api_version: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 3
    base_retry_delay_ms: int = 1000
    enable_throttling: bool = True
    enable_circuit_breaker: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_reset_timeout_minutes: float = 1.0
    health_endpoint: str = "/api/whoami"

    @classmethod
    def from_env(cls, base: TransportConfig | None = None) -> TransportConfig:
        """Create config from LUBELOGGER_* environment variables.

        Args:
            base: Values to fall back on for unset variables (defaults if None)
        """
        base = base or cls()
        return cls(
            base_url=os.environ.get("LUBELOGGER_BASE_URL", base.base_url),
            api_version=os.environ.get("LUBELOGGER_API_VERSION", base.api_version),
            timeout_seconds=_env_float("LUBELOGGER_TIMEOUT_SECONDS", base.timeout_seconds),
            max_retries=_env_int("LUBELOGGER_MAX_RETRIES", base.max_retries),
            base_retry_delay_ms=_env_int(
                "LUBELOGGER_BASE_RETRY_DELAY_MS", base.base_retry_delay_ms
            ),
            enable_throttling=_env_bool("LUBELOGGER_ENABLE_THROTTLING", base.enable_throttling),
            enable_circuit_breaker=_env_bool(
                "LUBELOGGER_ENABLE_CIRCUIT_BREAKER", base.enable_circuit_breaker
            ),
            circuit_breaker_failure_threshold=_env_int(
                "LUBELOGGER_CB_FAILURE_THRESHOLD", base.circuit_breaker_failure_threshold
            ),
            circuit_breaker_reset_timeout_minutes=_env_float(
                "LUBELOGGER_CB_RESET_TIMEOUT_MINUTES", base.circuit_breaker_reset_timeout_minutes
            ),
            health_endpoint=base.health_endpoint,
        )

    @property
    def base_retry_delay(self) -> float:
        """Base retry delay in seconds."""
        return self.base_retry_delay_ms / 1000

    @property
    def reset_timeout(self) -> float:
        """Circuit breaker reset timeout in seconds."""
        return self.circuit_breaker_reset_timeout_minutes * 60


@dataclass
class SyncConfig:
    """Configuration for the sync orchestrator."""

    auto_sync_interval_seconds: float = 900.0
    event_buffer_size: int = 256
    # Download types that have no local rows yet (first run)
    refresh_empty_types: bool = True
    conflict_journal_path: Path | None = None

    def __post_init__(self) -> None:
        if isinstance(self.conflict_journal_path, str):
            self.conflict_journal_path = Path(self.conflict_journal_path).expanduser()


@dataclass
class CacheConfiguration:
    """Expiration and priority settings for one entity type.

    Attributes:
        entity_type_name: Entity type tag (e.g. "Vehicle")
        expiration_minutes: How long a synced copy stays fresh
        is_critical: Whether the type must be available offline
        sync_priority: Visiting order during a sync pass (lower = earlier)
    """

    entity_type_name: str
    expiration_minutes: int = 60
    is_critical: bool = False
    sync_priority: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type_name": self.entity_type_name,
            "expiration_minutes": self.expiration_minutes,
            "is_critical": self.is_critical,
            "sync_priority": self.sync_priority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheConfiguration:
        return cls(
            entity_type_name=data["entity_type_name"],
            expiration_minutes=int(data.get("expiration_minutes", 60)),
            is_critical=bool(data.get("is_critical", False)),
            sync_priority=int(data.get("sync_priority", 100)),
        )


DEFAULT_CACHE_CONFIGURATIONS: tuple[CacheConfiguration, ...] = (
    CacheConfiguration("Vehicle", expiration_minutes=1440, is_critical=True, sync_priority=1),
    CacheConfiguration("UserPreference", expiration_minutes=1440, is_critical=True, sync_priority=1),
    CacheConfiguration("OdometerRecord", expiration_minutes=720, is_critical=True, sync_priority=2),
    CacheConfiguration("Reminder", expiration_minutes=720, is_critical=True, sync_priority=2),
    CacheConfiguration("PlanRecord", expiration_minutes=720, sync_priority=3),
    CacheConfiguration("ServiceRecord", expiration_minutes=720, sync_priority=3),
    CacheConfiguration("RepairRecord", expiration_minutes=720, sync_priority=3),
    CacheConfiguration("UpgradeRecord", expiration_minutes=720, sync_priority=3),
    CacheConfiguration("GasRecord", expiration_minutes=720, sync_priority=3),
    CacheConfiguration("TaxRecord", expiration_minutes=1440, sync_priority=4),
)


@dataclass
class LoggingSettings:
    level: str = "INFO"
    structured: bool = False


@dataclass
class Settings:
    """All settings loaded from settings.yaml."""

    transport: TransportConfig = field(default_factory=TransportConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    cache: list[CacheConfiguration] = field(
        default_factory=lambda: list(DEFAULT_CACHE_CONFIGURATIONS)
    )
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, path: Path | None = None, use_env: bool = True) -> Settings:
        """Load settings from YAML.

        Args:
            path: Path to settings.yaml. Defaults to ~/.lubelogger/settings.yaml
            use_env: Let LUBELOGGER_* variables override the transport section

        Returns:
            Settings; defaults when the file does not exist

        Raises:
            ConfigurationError: If the file is not valid YAML or has the wrong shape
        """
        path = path or DEFAULT_SETTINGS_PATH
        raw = cls._read(path)

        try:
            transport = TransportConfig(**_known_fields(TransportConfig, raw.get("api") or {}))
            sync = SyncConfig(**_known_fields(SyncConfig, raw.get("sync") or {}))
            logging_settings = LoggingSettings(
                **_known_fields(LoggingSettings, raw.get("logging") or {})
            )
            cache_rows = raw.get("cache")
            cache = (
                [CacheConfiguration.from_dict(row) for row in cache_rows]
                if cache_rows
                else list(DEFAULT_CACHE_CONFIGURATIONS)
            )
        except (TypeError, KeyError, ValueError) as e:
            raise ConfigurationError(f"Invalid settings in {path}: {e}", source=str(path)) from e

        if use_env:
            transport = TransportConfig.from_env(transport)

        return cls(transport=transport, sync=sync, cache=cache, logging=logging_settings)

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            content = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed YAML in {path}: {e}", source=str(path)) from e
        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigurationError(f"Expected a mapping at the top of {path}", source=str(path))
        return content
