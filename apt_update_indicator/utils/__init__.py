"""
Utils package for Apt Update Indicator.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from .logger import get_logger, set_global_config
from .subprocess_wrapper import SecureSubprocess
from .process_runner import ProcessRunner, ProcessResult
from .network_probe import NetworkProbe
from .change_watcher import ChangeWatcher
from .timer_manager import TimerManager
from .state_store import StateStore

__all__ = [
    "get_logger",
    "set_global_config",
    "SecureSubprocess",
    "ProcessRunner",
    "ProcessResult",
    "NetworkProbe",
    "ChangeWatcher",
    "TimerManager",
    "StateStore",
]
