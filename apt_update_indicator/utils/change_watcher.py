"""
Directory change watching by periodic signature polling.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Tuple

from ..constants import WATCH_DEBOUNCE, WATCH_POLL_INTERVAL
from .logger import get_logger
from .timer_manager import TimerManager

logger = get_logger(__name__)

# name -> (mtime_ns, size)
Signature = Dict[str, Tuple[int, int]]


def directory_signature(path: str) -> Signature:
    """
    Snapshot the entries of one directory.

    Args:
        path: Directory to scan

    Returns:
        Mapping of entry name to modification time and size; empty if the
        directory cannot be read
    """
    signature: Signature = {}
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError:
                    continue
                signature[entry.name] = (st.st_mtime_ns, st.st_size)
    except OSError as e:
        logger.debug(f"Cannot scan {path}: {e}")
    return signature


class ChangeWatcher:
    """
    Calls `on_change` once per burst of changes in a set of directories.

    The directories are polled every `poll_interval` seconds. Every detected
    change restarts a `debounce` second timer, and `on_change` runs when the
    timer expires without further changes.
    """

    def __init__(self, paths: Iterable[str], on_change: Callable[[], None],
                 debounce: float = WATCH_DEBOUNCE,
                 poll_interval: float = WATCH_POLL_INTERVAL,
                 loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.paths = [str(Path(p)) for p in paths]
        self.on_change = on_change
        self.debounce = debounce
        self.poll_interval = poll_interval
        self._timers = TimerManager("change_watcher", loop)
        self._signatures: Dict[str, Signature] = {}
        self._active = False

    @property
    def active(self) -> bool:
        """True between start() and stop()."""
        return self._active

    def start(self) -> None:
        """Take a fresh baseline and begin polling. No-op if already active."""
        if self._active:
            return
        self._signatures = {path: directory_signature(path) for path in self.paths}
        self._active = True
        self._timers.schedule("poll", self.poll_interval, self._poll)
        logger.debug(f"Watching {', '.join(self.paths)}")

    def stop(self) -> None:
        """Stop polling and drop any pending notification."""
        if not self._active:
            return
        self._active = False
        self._timers.cancel_all()
        logger.debug("Stopped watching package directories")

    def _poll(self) -> None:
        if not self._active:
            return

        changed = []
        for path in self.paths:
            current = directory_signature(path)
            if current != self._signatures.get(path):
                self._signatures[path] = current
                changed.append(path)

        if changed:
            logger.debug(f"Change detected in {', '.join(changed)}")
            self._timers.schedule("debounce", self.debounce, self._fire)

        self._timers.schedule("poll", self.poll_interval, self._poll)

    def _fire(self) -> None:
        if not self._active:
            return
        logger.info("Package directories changed")
        self.on_change()
