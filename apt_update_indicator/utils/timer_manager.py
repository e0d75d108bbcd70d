"""
Named event loop timers, so every delayed callback can be found and cancelled.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

import asyncio
from typing import Callable, Dict, Optional

from .logger import get_logger

logger = get_logger(__name__)


class TimerManager:
    """Owns the loop timers of one component, keyed by name."""

    MAX_TIMERS = 20

    def __init__(self, component_id: str, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Initialize the manager.

        Args:
            component_id: Name used in log messages
            loop: Event loop to schedule on, defaults to the running loop
        """
        self.component_id = component_id
        self._loop = loop
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, name: str, delay: float, callback: Callable[[], None]) -> bool:
        """
        Run `callback` once after `delay` seconds.

        Scheduling a name that is already pending restarts it, which is what
        debouncing needs.

        Args:
            name: Timer name
            delay: Delay in seconds
            callback: Function to call when the timer fires

        Returns:
            False if the timer limit is reached
        """
        self.cancel(name)

        if len(self._timers) >= self.MAX_TIMERS:
            logger.warning(f"Timer creation denied for {self.component_id}: limit reached ({self.MAX_TIMERS})")
            return False

        def timer_wrapper() -> None:
            self._timers.pop(name, None)
            try:
                callback()
            except Exception as e:
                logger.error(f"Timer {self.component_id}/{name} callback failed: {e}", exc_info=True)

        self._timers[name] = self._get_loop().call_later(max(0.0, delay), timer_wrapper)
        logger.debug(f"Scheduled timer {self.component_id}/{name} in {delay:.0f}s")
        return True

    def cancel(self, name: str) -> bool:
        """
        Cancel a pending timer.

        Returns:
            True if a timer was pending
        """
        handle = self._timers.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug(f"Cancelled timer {self.component_id}/{name}")
        return True

    def cancel_all(self) -> int:
        """
        Cancel every pending timer.

        Returns:
            Number of timers cancelled
        """
        cancelled = 0
        for name in list(self._timers):
            if self.cancel(name):
                cancelled += 1
        return cancelled

    def is_pending(self, name: str) -> bool:
        """True if the named timer has not fired yet."""
        return name in self._timers

    def remaining(self, name: str) -> Optional[float]:
        """Seconds until the named timer fires, or None."""
        handle = self._timers.get(name)
        if handle is None:
            return None
        return max(0.0, handle.when() - self._get_loop().time())

    @property
    def active_count(self) -> int:
        """Number of pending timers."""
        return len(self._timers)
