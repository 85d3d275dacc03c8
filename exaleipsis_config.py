#!/usr/bin/env python3
"""
Exaleipsis Configuration Manager

Persisted defaults and run statistics, stored as JSON in a .exaleipsis
directory under the user's home.
"""

import json
import pathlib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

MIN_FREE_SPACE_RANGE = (1, 1000)  # GB
TIMEOUT_RANGE = (60, 3600)  # seconds
MAX_DEPTH_RANGE = (3, 15)

DEFAULT_MIN_FREE_SPACE_GB = 5
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_MAX_DEPTH = 8
DEFAULT_RETRY_DELAY_SECONDS = 30


def _default_stats() -> dict:
    return {"total_runs": 0, "total_removed": 0, "total_reclaimed_bytes": 0}


def _in_range(value, bounds: tuple[int, int], default: int) -> int:
    """Keep a persisted value only if it is an int inside *bounds*"""
    if isinstance(value, int) and not isinstance(value, bool) and bounds[0] <= value <= bounds[1]:
        return value
    return default


@dataclass
class ExaleipsisConfig:
    """Persisted defaults; command-line flags override them for one run"""

    version: str = "1.0"
    min_free_space_gb: int = DEFAULT_MIN_FREE_SPACE_GB
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_depth: int = DEFAULT_MAX_DEPTH
    retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SECONDS
    include_network: bool = False
    last_run: Optional[str] = None
    stats: dict = field(default_factory=_default_stats)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ExaleipsisConfig":
        """Create from dictionary, falling back to defaults for invalid values"""
        stats = _default_stats()
        stats.update({k: v for k, v in (data.get("stats") or {}).items() if isinstance(v, int)})
        return cls(
            version=data.get("version", "1.0"),
            min_free_space_gb=_in_range(data.get("min_free_space_gb"), MIN_FREE_SPACE_RANGE, DEFAULT_MIN_FREE_SPACE_GB),
            timeout_seconds=_in_range(data.get("timeout_seconds"), TIMEOUT_RANGE, DEFAULT_TIMEOUT_SECONDS),
            max_depth=_in_range(data.get("max_depth"), MAX_DEPTH_RANGE, DEFAULT_MAX_DEPTH),
            retry_delay_seconds=_in_range(data.get("retry_delay_seconds"), (0, 600), DEFAULT_RETRY_DELAY_SECONDS),
            include_network=bool(data.get("include_network", False)),
            last_run=data.get("last_run"),
            stats=stats,
        )

    def record_run(self, removed: int, reclaimed_bytes: int):
        """Add one execute run to the statistics"""
        self.stats["total_runs"] = self.stats.get("total_runs", 0) + 1
        self.stats["total_removed"] = self.stats.get("total_removed", 0) + removed
        self.stats["total_reclaimed_bytes"] = self.stats.get("total_reclaimed_bytes", 0) + reclaimed_bytes
        self.last_run = datetime.now(timezone.utc).isoformat()


class ConfigManager:
    """Loads and saves the Exaleipsis configuration file"""

    def __init__(self, config_dir: Optional[pathlib.Path] = None):
        """Initialize configuration manager

        Args:
            config_dir: Override default .exaleipsis directory location
        """
        if config_dir:
            self.config_dir = config_dir
        else:
            self.config_dir = pathlib.Path.home() / ".exaleipsis"

        self.config_file = self.config_dir / "config.json"

    def load(self) -> ExaleipsisConfig:
        """Load configuration from file"""
        if not self.config_file.exists():
            return ExaleipsisConfig()
        try:
            with self.config_file.open() as f:
                data = json.load(f)
            if not isinstance(data, dict):
                return ExaleipsisConfig()
            return ExaleipsisConfig.from_dict(data)
        except (json.JSONDecodeError, KeyError, AttributeError, UnicodeDecodeError):
            # If config is corrupted, return default
            return ExaleipsisConfig()

    def save(self, config: ExaleipsisConfig):
        """Save configuration to file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with self.config_file.open("w") as f:
            json.dump(config.to_dict(), f, indent=2)
