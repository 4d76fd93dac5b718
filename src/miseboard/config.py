"""
Configuration management for miseboard.

This module provides configuration file support with YAML format,
user preferences, and default settings.

Features:
- YAML configuration file at ~/.config/miseboard/config.yaml
- Default values with user overrides
- Project scan roots and depth (MISEBOARD_SCAN_DIRS overrides the roots)
- mise binary location and version list limit
- Log level / location override

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- Provides typed access to settings
- Handles missing/invalid config gracefully
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

SCAN_DIRS_ENV = "MISEBOARD_SCAN_DIRS"

SECTIONS = ("scan", "mise", "ui", "logging")


def _default_scan_dirs() -> List[str]:
    return [str(Path.home() / "projects"), os.getcwd()]


@dataclass
class ScanConfig:
    """Where the Projects tab looks for .mise.toml manifests."""
    dirs: List[str] = field(default_factory=_default_scan_dirs)
    max_depth: int = 3


@dataclass
class MiseConfig:
    """How the mise binary is invoked."""
    binary: str = "mise"
    versions_limit: int = 50


@dataclass
class UIConfig:
    """UI-related configuration."""
    tick_interval: float = 0.25  # seconds
    status_ttl: int = 20  # ticks


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    scan: ScanConfig = field(default_factory=ScanConfig)
    mise: MiseConfig = field(default_factory=MiseConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    logging: LogConfig = field(default_factory=LogConfig)


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path.home() / ".config" / "miseboard"
        self.config_file = self.config_dir / "config.yaml"
        self._config: AppConfig = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file, then apply environment overrides."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ValueError("top level must be a mapping")
                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self._config = AppConfig()
        except Exception as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

        env_dirs = os.environ.get(SCAN_DIRS_ENV, "").strip()
        if env_dirs:
            self._config.scan.dirs = [p for p in env_dirs.split(os.pathsep) if p]

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults, one section at a time."""
        for section, updates in user.items():
            if section in SECTIONS:
                self._merge_dataclass(getattr(default, section), updates)
            else:
                logger.warning(f"Ignoring unknown config section: {section}")
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        if not isinstance(updates, dict):
            return
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {key}")


# Global config instance
config_manager = ConfigManager()
