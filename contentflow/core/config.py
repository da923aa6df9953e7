"""
ConfigManager - configuration loading
YAML files + environment overrides, exposed to the engine as a frozen EngineSettings.
"""

import os
import time
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError
from .logging import LoggerManager


ROOT_DIR = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_DIR = ROOT_DIR / "config"
ENV_PREFIX = "CONTENTFLOW_"

MAX_TURNS_DEFAULT = 12
MAX_TURNS_RANGE = (1, 50)
FILE_RETENTION_DEFAULT = 7
FILE_RETENTION_RANGE = (1, 90)

DEFAULT_INTERVALS = {
    "every_5_minutes": 300,
    "hourly": 3600,
    "every_2_hours": 7200,
    "every_4_hours": 14400,
    "qtrdaily": 21600,
    "twicedaily": 43200,
    "daily": 86400,
    "weekly": 604800,
}


def clamp_max_turns(value: Any) -> int:
    """Clamp the AI turn bound into [1, 50]; unparsable values fall back to the default."""
    try:
        turns = int(value)
    except (TypeError, ValueError):
        return MAX_TURNS_DEFAULT
    low, high = MAX_TURNS_RANGE
    return max(low, min(high, turns))


def _retention_days(value: Any) -> int:
    # out-of-range values are rejected, not clamped
    try:
        days = int(value)
    except (TypeError, ValueError):
        return FILE_RETENTION_DEFAULT
    low, high = FILE_RETENTION_RANGE
    return days if low <= days <= high else FILE_RETENTION_DEFAULT


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class EngineSettings:
    """Read-only engine configuration passed to the scheduler, dispatcher and steps."""

    db_path: Path = ROOT_DIR / "data" / "contentflow.db"
    files_dir: Path = ROOT_DIR / "data" / "files"
    max_turns: int = MAX_TURNS_DEFAULT
    file_retention_days: int = FILE_RETENTION_DEFAULT
    processed_items_retention_days: int = 0
    cleanup_job_data_on_failure: bool = True
    default_provider: str = "openai"
    default_model: str = ""
    openai_api_key: str = ""
    openai_base_url: Optional[str] = None
    broker_url: str = "redis://localhost:6379/0"
    result_backend: Optional[str] = None
    step_retry_countdown: int = 5
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    scheduler_intervals: Mapping[str, int] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_INTERVALS)))
    extensions: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EngineSettings":
        """Build settings from a plain mapping, applying defaults, clamps and type coercion."""
        engine = dict(data.get("engine") or {})
        ai = dict(data.get("ai") or {})
        queue = dict(data.get("queue") or {})
        storage = dict(data.get("storage") or {})
        logging_cfg = dict(data.get("logging") or {})

        intervals = dict(DEFAULT_INTERVALS)
        intervals.update({str(k): int(v) for k, v in (data.get("scheduler_intervals") or {}).items()})

        log_file = logging_cfg.get("file")
        base_url = ai.get("openai_base_url") or None
        return cls(
            db_path=Path(storage.get("db_path") or cls.db_path),
            files_dir=Path(storage.get("files_dir") or cls.files_dir),
            max_turns=clamp_max_turns(ai.get("max_turns", MAX_TURNS_DEFAULT)),
            file_retention_days=_retention_days(storage.get("file_retention_days", FILE_RETENTION_DEFAULT)),
            processed_items_retention_days=max(0, int(storage.get("processed_items_retention_days", 0) or 0)),
            cleanup_job_data_on_failure=_as_bool(engine.get("cleanup_job_data_on_failure", True)),
            default_provider=str(ai.get("default_provider") or "openai"),
            default_model=str(ai.get("default_model") or ""),
            openai_api_key=str(ai.get("openai_api_key") or ""),
            openai_base_url=base_url,
            broker_url=str(queue.get("broker_url") or cls.broker_url),
            result_backend=queue.get("result_backend") or None,
            step_retry_countdown=int(queue.get("step_retry_countdown", 5)),
            log_level=str(logging_cfg.get("level") or "INFO"),
            log_file=Path(log_file) if log_file else None,
            scheduler_intervals=MappingProxyType(intervals),
            extensions=tuple(engine.get("extensions") or ()),
        )


class ConfigManager:
    """Configuration manager: YAML files, env overrides, cached dot-path lookups"""

    def __init__(self, config_dir: Optional[Path] = None, cache_ttl: int = 300, logger=None):
        self._config_dir = Path(config_dir or os.getenv(f"{ENV_PREFIX}CONFIG_DIR") or DEFAULT_CONFIG_DIR)
        self._cache_ttl = cache_ttl
        self._config_cache: Dict[str, Any] = {}
        self._cache_timestamps: Dict[str, float] = {}
        self._merged: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()
        self._logger = logger or LoggerManager.get_logger(__name__)

        env_local = self._config_dir / ".env.local"
        if env_local.exists():
            load_dotenv(env_local)

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def get_config_value(self, key_path: str, default=None) -> Any:
        """
        Get a value by dot path, e.g. "ai.max_turns"

        Args:
            key_path: dot separated path
            default: returned when any segment is missing

        Returns:
            the configured value or default
        """
        if key_path in self._cache_timestamps:
            if time.time() - self._cache_timestamps[key_path] > self._cache_ttl:
                self.invalidate_cache(key_path)

        if key_path not in self._config_cache:
            self._config_cache[key_path] = self._lookup(self.load_config(), key_path, default)
            self._cache_timestamps[key_path] = time.time()

        return self._config_cache[key_path]

    @staticmethod
    def _lookup(data: Dict[str, Any], key_path: str, default: Any) -> Any:
        value: Any = data
        for part in key_path.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(part)
            if value is None:
                return default
        return value

    def invalidate_cache(self, key: str = None):
        if key:
            self._config_cache.pop(key, None)
            self._cache_timestamps.pop(key, None)
        else:
            self._config_cache.clear()
            self._cache_timestamps.clear()
            self._merged = None

    def reload_config(self):
        self.invalidate_cache()
        self._logger.info("Configuration reloaded")

    def load_config(self) -> Dict[str, Any]:
        """
        Load and merge configuration.

        Order (later wins):
        1. base.yaml
        2. *.local.yaml (sorted)
        3. CONTENTFLOW_<SECTION>__<KEY> environment variables
        """
        with self._lock:
            if self._merged is not None:
                return self._merged

            merged: Dict[str, Any] = {}
            self._deep_merge(merged, self._load_yaml_file(self._config_dir / "base.yaml") or {})
            if self._config_dir.exists():
                for local_file in sorted(self._config_dir.glob("*.local.yaml")):
                    self._deep_merge(merged, self._load_yaml_file(local_file) or {})
            self._deep_merge(merged, self._env_overrides())
            self._merged = merged
            return merged

    def _load_yaml_file(self, file_path: Path) -> Optional[Dict[str, Any]]:
        if not file_path.exists():
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {file_path}: {e}", config_key=str(file_path)) from e
        self._logger.debug(f"Loaded config from {file_path.name}")
        return config_data if isinstance(config_data, dict) else {}

    @staticmethod
    def _env_overrides() -> Dict[str, Any]:
        # CONTENTFLOW_AI__MAX_TURNS=20 -> {"ai": {"max_turns": "20"}}
        overrides: Dict[str, Any] = {}
        for name, value in os.environ.items():
            if not name.startswith(ENV_PREFIX) or "__" not in name:
                continue
            path = name[len(ENV_PREFIX):].lower().split("__")
            node = overrides
            for part in path[:-1]:
                node = node.setdefault(part, {})
            node[path[-1]] = value
        return overrides

    @classmethod
    def _deep_merge(cls, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                cls._deep_merge(target[key], value)
            else:
                target[key] = value

    def build_settings(self) -> EngineSettings:
        settings = EngineSettings.from_mapping(self.load_config())
        if not settings.openai_api_key:
            settings = replace(settings, openai_api_key=os.getenv("OPENAI_API_KEY", ""))
        return settings
