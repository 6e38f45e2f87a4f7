"""
Change tracking configuration loader.

Loads pagination bounds, propagation mode, publish announcements and
worker settings from config/change_tracking.yml.

Consumers:
  - ChangeFeedService: default and maximum page size
  - PanelStructureService: inline vs deferred propagation
  - ViewService: publish announcements
  - ChangePropagationWorker: batch size and lookback window

Usage:
    from panels.config.change_tracking import get_change_tracking_config

    config = get_change_tracking_config()
    config.max_limit          # 100
    config.propagate_inline   # True
"""

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

# Hard ceiling for page size regardless of configuration
MAX_PAGE_LIMIT = 100

_FALLBACK_DEFAULT_LIMIT = 50
_FALLBACK_WORKER_BATCH_SIZE = 100
_FALLBACK_WORKER_LOOKBACK_MINUTES = 60


class ChangeTrackingConfig:
    """
    Thread-safe singleton loader for config/change_tracking.yml.

    Missing file or missing keys fall back to built-in defaults.
    """

    _instance: Optional["ChangeTrackingConfig"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path or os.getenv("CHANGE_TRACKING_CONFIG")
        self._raw: Dict[str, Any] = {}
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent / "config" / "change_tracking.yml",
            Path(os.getcwd()) / "config" / "change_tracking.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"change_tracking.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            try:
                path = self._resolve_path()
                logger.info("Loading change tracking config from %s", path)

                with open(path, "r") as f:
                    self._raw = yaml.safe_load(f) or {}

                logger.info(
                    "Loaded change tracking config: default_limit=%s, max_limit=%s, inline=%s",
                    self.default_limit,
                    self.max_limit,
                    self.propagate_inline,
                )
            except FileNotFoundError:
                logger.warning(
                    "change_tracking.yml not found, using fallback defaults"
                )
                self._raw = {}

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    def _section(self, name: str) -> Dict[str, Any]:
        return self._raw.get(name) or {}

    @property
    def max_limit(self) -> int:
        """Largest page size, never above MAX_PAGE_LIMIT."""
        value = int(self._section("pagination").get("max_limit", MAX_PAGE_LIMIT))
        return max(1, min(value, MAX_PAGE_LIMIT))

    @property
    def default_limit(self) -> int:
        value = int(self._section("pagination").get("default_limit", _FALLBACK_DEFAULT_LIMIT))
        return max(1, min(value, self.max_limit))

    @property
    def propagate_inline(self) -> bool:
        """Classify and notify on the request that recorded the change."""
        return bool(self._section("propagation").get("inline", True))

    @property
    def announce_publish(self) -> bool:
        """Create an info notification when a View is published."""
        return bool(self._section("notifications").get("announce_publish", True))

    @property
    def worker_batch_size(self) -> int:
        return int(self._section("worker").get("batch_size", _FALLBACK_WORKER_BATCH_SIZE))

    @property
    def worker_lookback_minutes(self) -> int:
        return int(
            self._section("worker").get("lookback_minutes", _FALLBACK_WORKER_LOOKBACK_MINUTES)
        )

    def get_all(self) -> Dict[str, Any]:
        """Return the effective configuration."""
        return {
            "version": self._raw.get("version", 1),
            "pagination": {
                "default_limit": self.default_limit,
                "max_limit": self.max_limit,
            },
            "propagation": {"inline": self.propagate_inline},
            "notifications": {"announce_publish": self.announce_publish},
            "worker": {
                "batch_size": self.worker_batch_size,
                "lookback_minutes": self.worker_lookback_minutes,
            },
        }


def get_change_tracking_config(
    config_path: Optional[str] = None,
) -> ChangeTrackingConfig:
    """Return the singleton ChangeTrackingConfig."""
    return ChangeTrackingConfig(config_path)


def reset_change_tracking_config() -> None:
    """Reset singleton (for tests only)."""
    ChangeTrackingConfig._instance = None
