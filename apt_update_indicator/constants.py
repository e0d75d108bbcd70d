"""
Application constants for Apt Update Indicator.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from pathlib import Path

# Application info
APP_NAME = "Apt Update Indicator"
APP_SLUG = "apt-update-indicator"
APP_VERSION = "1.0.0"
APP_USER_AGENT = f"{APP_NAME}/{APP_VERSION}"

# File permissions (octal)
CONFIG_DIR_PERMISSIONS = 0o700  # rwx------
CONFIG_FILE_PERMISSIONS = 0o600  # rw-------
CACHE_DIR_PERMISSIONS = 0o700   # rwx------

# Commands
STOCK_CHECK_CMD = "/usr/bin/pkcon refresh"
PRIVILEGE_WRAPPER = "/usr/bin/pkexec"
SCRIPT_SHELL = "/bin/bash"

# Indexed by the `update_cmd_options` setting; option 3 is the custom command
UPDATE_CMD_CHOICES = {
    0: "/usr/bin/gnome-software --mode updates",
    1: "/usr/bin/update-manager",
    2: "/usr/bin/gpk-update-viewer",
}
CUSTOM_UPDATE_CMD_OPTION = 3

# Interval units, in seconds
INTERVAL_UNITS = {
    "hours": 60 * 60,
    "days": 60 * 60 * 24,
    "weeks": 60 * 60 * 24 * 7,
}

# Default values
DEFAULT_CHECK_INTERVAL = 1
DEFAULT_INTERVAL_UNIT = "days"
DEFAULT_TERMINAL = "gnome-terminal -x bash -c"
MAX_VERBOSITY = 2

# Scheduling (seconds)
INITIAL_RUN_DELAY = 30
INITIALIZING_BACKOFF = 120
MINIMUM_BACKOFF = 10
IGNORE_LIST_DEBOUNCE = 5

# Change watcher (seconds)
WATCH_DEBOUNCE = 10
WATCH_POLL_INTERVAL = 2
WATCHED_DIRECTORIES = (
    "/var/lib/apt/lists",
    "/var/lib/dpkg",
)

# Network probe
PROBE_URL = "http://ftp.debian.org"
PROBE_TIMEOUT = 10

# Presentation
TAB_WIDTH = 8
MAX_NOTIFICATION_LINES = 50


# Paths
def get_config_dir() -> Path:
    """Get the configuration directory path."""
    return Path.home() / ".config" / APP_SLUG


def get_cache_dir() -> Path:
    """Get the cache directory path."""
    return Path.home() / ".cache" / APP_SLUG


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return get_config_dir() / "config.json"


def get_default_state_path() -> Path:
    """Get the default state snapshot path."""
    return get_cache_dir() / "state.json"


def get_bundled_scripts_dir() -> Path:
    """Get the directory holding the bundled listing scripts."""
    return Path(__file__).resolve().parent / "scripts"
