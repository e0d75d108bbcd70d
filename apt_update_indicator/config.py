"""
Configuration management for Apt Update Indicator.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

import json
import os
import shlex
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Tuple

from .constants import (
    CONFIG_DIR_PERMISSIONS, CONFIG_FILE_PERMISSIONS,
    CUSTOM_UPDATE_CMD_OPTION, DEFAULT_CHECK_INTERVAL, DEFAULT_INTERVAL_UNIT,
    DEFAULT_TERMINAL, INTERVAL_UNITS, MAX_VERBOSITY, STOCK_CHECK_CMD,
    UPDATE_CMD_CHOICES, get_bundled_scripts_dir, get_default_config_path
)
from .exceptions import ConfigurationError
from .filtering import split_entries
from .models import AUXILIARY_CATEGORIES, AppConfig, Category
from .utils.logger import get_logger
from .utils.subprocess_wrapper import SecureSubprocess

logger = get_logger(__name__)

# Largest config file we agree to parse
MAX_CONFIG_SIZE = 1024 * 1024

ChangeCallback = Callable[[str, Any], None]


@dataclass(frozen=True)
class Settings:
    """Settings seen by one check; taken with Config.snapshot()."""
    check_interval: int = DEFAULT_CHECK_INTERVAL
    interval_unit: str = DEFAULT_INTERVAL_UNIT
    check_network: bool = True
    strip_versions: bool = False
    show_critical_updates: bool = True
    ignore_list: FrozenSet[str] = frozenset()
    new_packages: bool = False
    obsolete_packages: bool = False
    residual_packages: bool = False
    autoremovable_packages: bool = False
    use_custom_cmd: bool = False
    check_cmd_custom: str = ""
    update_cmd_options: int = 0
    update_cmd: str = ""
    output_on_terminal: bool = False
    terminal: str = DEFAULT_TERMINAL
    notify: bool = False
    verbosity: int = 0
    scripts_dir: Path = get_bundled_scripts_dir()

    @property
    def interval_seconds(self) -> int:
        """Automatic check interval; 0 disables automatic checks."""
        return self.check_interval * INTERVAL_UNITS[self.interval_unit]

    def category_enabled(self, category: Category) -> bool:
        """True if the auxiliary `category` should be listed."""
        flag = AUXILIARY_CATEGORIES.get(category)
        return bool(flag and getattr(self, flag))

    @property
    def enabled_categories(self) -> Tuple[Category, ...]:
        """Auxiliary categories switched on, in a stable order."""
        return tuple(c for c in AUXILIARY_CATEGORIES if self.category_enabled(c))

    @property
    def check_command(self) -> List[str]:
        """
        Command refreshing the package index.

        Raises:
            SpawnFailed: If the custom command cannot be parsed
        """
        if self.use_custom_cmd and self.check_cmd_custom.strip():
            return SecureSubprocess.with_privilege(SecureSubprocess.parse_command(self.check_cmd_custom))
        return SecureSubprocess.parse_command(STOCK_CHECK_CMD)

    @property
    def update_command(self) -> List[str]:
        """
        Command applying updates.

        Raises:
            SpawnFailed: If the custom or terminal command cannot be parsed
        """
        custom = self.update_cmd.strip()
        if self.update_cmd_options == CUSTOM_UPDATE_CMD_OPTION and custom:
            if self.output_on_terminal:
                script = f"echo {shlex.quote(custom)}; {custom}; echo Press any key to continue; read -n1 key"
                return SecureSubprocess.parse_command(self.terminal) + [script]
            return SecureSubprocess.parse_command(custom)
        command = UPDATE_CMD_CHOICES.get(self.update_cmd_options, UPDATE_CMD_CHOICES[0])
        return SecureSubprocess.parse_command(command)


class Config:
    """Manages configuration for Apt Update Indicator."""

    def __init__(self, config_file: Optional[str] = None) -> None:
        """
        Initialize configuration.

        Args:
            config_file: Path to configuration file
        """
        self.config_file = str(config_file) if config_file else str(get_default_config_path())
        self._batch_mode = False
        self._batch_changes: Dict[str, Any] = {}
        self._listeners: Dict[Optional[str], List[ChangeCallback]] = {}

        # What is saved; `config` adds the process-only overrides on top
        self._stored = self._load_config().to_dict()
        self.config = dict(self._stored)

    def _load_config(self) -> AppConfig:
        """
        Load configuration from file, falling back to defaults.

        Returns:
            AppConfig instance
        """
        try:
            if os.path.exists(self.config_file):
                file_size = os.path.getsize(self.config_file)
                if file_size > MAX_CONFIG_SIZE:
                    raise ValueError(f"Config file too large: {file_size} bytes")

                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)

                if not isinstance(data, dict):
                    raise ValueError("Top level must be an object")

                logger.info(f"Loaded configuration from {self.config_file}")
                return AppConfig.from_dict(data)

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file {self.config_file}: {e}")
        except PermissionError as e:
            logger.error(f"Permission denied reading config file {self.config_file}: {e}")
        except OSError as e:
            logger.error(f"Error reading config file {self.config_file}: {e}")
        except (ValueError, TypeError) as e:
            logger.error(f"Config file validation error: {e}")

        logger.info("Using default configuration")
        return AppConfig()

    def save_config(self) -> None:
        """
        Save current configuration to file.

        Raises:
            ConfigurationError: If saving fails
        """
        if self._batch_mode:
            return

        try:
            config_dir = Path(self.config_file).parent
            config_dir.mkdir(parents=True, exist_ok=True)

            try:
                os.chmod(config_dir, CONFIG_DIR_PERMISSIONS)
            except OSError as e:
                logger.warning(f"Failed to set permissions on config directory: {e}")

            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(self._stored, f, indent=2, ensure_ascii=False)

            try:
                os.chmod(self.config_file, CONFIG_FILE_PERMISSIONS)
            except OSError as e:
                logger.warning(f"Failed to set permissions on config file: {e}")

            logger.debug(f"Saved configuration to {self.config_file}")

        except PermissionError as e:
            raise ConfigurationError(f"Permission denied saving config: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to save config: {e}")

    def get(self, key: str, default: Optional[Any] = None) -> Optional[Any]:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self.config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value, save it and notify listeners.

        Args:
            key: Configuration key
            value: Configuration value

        Raises:
            ConfigurationError: If the key is unknown or saving fails
        """
        self.update_settings({key: value})

    def update_settings(self, settings: Dict[str, Any]) -> None:
        """
        Update multiple settings at once.

        Args:
            settings: Dictionary of settings to update

        Raises:
            ConfigurationError: If a key is unknown or saving fails
        """
        unknown = [key for key in settings if key not in AppConfig.__dataclass_fields__]
        if unknown:
            raise ConfigurationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        changed = {key: value for key, value in settings.items()
                   if self._stored.get(key) != value or self.config.get(key) != value}
        if not changed:
            return

        self._stored.update(changed)
        self.config.update(changed)

        if self._batch_mode:
            self._batch_changes.update(changed)
            return

        self.save_config()
        self._emit(changed)

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """
        Change settings for this process only: nothing is saved or emitted.

        An override lasts until the key is explicitly set.
        """
        self.config.update(overrides)

    def get_all_settings(self) -> Dict[str, Any]:
        """Get all settings as a dictionary."""
        return self.config.copy()

    @contextmanager
    def batch_update(self) -> Iterator[None]:
        """Context manager for batch updates: one save and one round of events at the end."""
        self._batch_mode = True
        try:
            yield
        finally:
            self._batch_mode = False
            changed, self._batch_changes = self._batch_changes, {}
            if changed:
                self.save_config()
                self._emit(changed)

    def connect(self, key: Optional[str], callback: ChangeCallback) -> None:
        """
        Call `callback(key, value)` whenever `key` changes.

        Args:
            key: Setting to watch, or None for every setting
            callback: Change handler
        """
        self._listeners.setdefault(key, []).append(callback)

    def disconnect(self, callback: ChangeCallback) -> None:
        """Remove `callback` from every key it was connected to."""
        for callbacks in self._listeners.values():
            while callback in callbacks:
                callbacks.remove(callback)

    def _emit(self, changed: Dict[str, Any]) -> None:
        for key, value in changed.items():
            logger.debug(f"Setting changed: {key}")
            for callback in self._listeners.get(key, []) + self._listeners.get(None, []):
                callback(key, value)

    # Validated getters

    def _get_bool(self, key: str) -> bool:
        value = self.config.get(key)
        default = getattr(AppConfig(), key)
        if isinstance(value, bool):
            return value
        logger.warning(f"Invalid {key} {value!r}, using default {default}")
        return default

    def _get_str(self, key: str) -> str:
        value = self.config.get(key)
        if isinstance(value, str):
            return value
        default = getattr(AppConfig(), key)
        logger.warning(f"Invalid {key} {value!r}, using default {default!r}")
        return default

    def get_check_interval(self) -> int:
        """Get the automatic check interval, in interval units; 0 disables."""
        value = self.config.get("check_interval", DEFAULT_CHECK_INTERVAL)
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
        logger.warning(f"Invalid check_interval {value}, using default {DEFAULT_CHECK_INTERVAL}")
        return DEFAULT_CHECK_INTERVAL

    def get_interval_unit(self) -> str:
        """Get the interval unit (hours, days or weeks)."""
        value = self.config.get("interval_unit", DEFAULT_INTERVAL_UNIT)
        if value in INTERVAL_UNITS:
            return value
        logger.warning(f"Invalid interval_unit {value!r}, using default {DEFAULT_INTERVAL_UNIT}")
        return DEFAULT_INTERVAL_UNIT

    def get_ignore_list(self) -> List[str]:
        """Get the names of packages never reported as upgrades."""
        return split_entries(self._get_str("ignore_list"))

    def get_update_cmd_option(self) -> int:
        """Get the selected update command option."""
        value = self.config.get("update_cmd_options", 0)
        if value in UPDATE_CMD_CHOICES or value == CUSTOM_UPDATE_CMD_OPTION:
            return value
        logger.warning(f"Invalid update_cmd_options {value}, using default 0")
        return 0

    def get_verbosity(self) -> int:
        """Get the notification verbosity, capped to the supported range."""
        value = self.config.get("verbosity", 0)
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            if value > MAX_VERBOSITY:
                logger.warning(f"Verbosity {value} out of range, capping to {MAX_VERBOSITY}")
                return MAX_VERBOSITY
            return value
        logger.warning(f"Invalid verbosity {value}, using default 0")
        return 0

    def get_scripts_dir(self) -> Path:
        """Get the directory holding the listing scripts."""
        value = self.config.get("scripts_dir")
        if not value:
            return get_bundled_scripts_dir()
        path = Path(os.path.expanduser(str(value)))
        if not path.is_dir():
            logger.warning(f"Scripts directory {path} does not exist, using bundled scripts")
            return get_bundled_scripts_dir()
        return path

    def snapshot(self) -> Settings:
        """Freeze the current configuration for one check."""
        return Settings(
            check_interval=self.get_check_interval(),
            interval_unit=self.get_interval_unit(),
            check_network=self._get_bool("check_network"),
            strip_versions=self._get_bool("strip_versions"),
            show_critical_updates=self._get_bool("show_critical_updates"),
            ignore_list=frozenset(self.get_ignore_list()),
            new_packages=self._get_bool("new_packages"),
            obsolete_packages=self._get_bool("obsolete_packages"),
            residual_packages=self._get_bool("residual_packages"),
            autoremovable_packages=self._get_bool("autoremovable_packages"),
            use_custom_cmd=self._get_bool("use_custom_cmd"),
            check_cmd_custom=self._get_str("check_cmd_custom"),
            update_cmd_options=self.get_update_cmd_option(),
            update_cmd=self._get_str("update_cmd"),
            output_on_terminal=self._get_bool("output_on_terminal"),
            terminal=self._get_str("terminal") or DEFAULT_TERMINAL,
            notify=self._get_bool("notify"),
            verbosity=self.get_verbosity(),
            scripts_dir=self.get_scripts_dir(),
        )
