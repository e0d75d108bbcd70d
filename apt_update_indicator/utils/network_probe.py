"""
Bounded-time reachability probe for the package mirror.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp

from ..constants import APP_USER_AGENT, PROBE_TIMEOUT, PROBE_URL
from .logger import get_logger

logger = get_logger(__name__)


class NetworkProbe:
    """
    Checks whether a reference host answers within a timeout.

    Only the most recent probe matters: starting a probe while another is
    pending cancels the pending request, and everybody waiting on it gets the
    result of the newer one.
    """

    def __init__(self, url: str = PROBE_URL, timeout: float = PROBE_TIMEOUT) -> None:
        """
        Initialize the probe.

        Args:
            url: Default host URL to probe
            timeout: Default timeout in seconds
        """
        self.url = url
        self.timeout = timeout
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        """True while a probe is in flight."""
        return self._task is not None and not self._task.done()

    async def probe(self, url: Optional[str] = None, timeout: Optional[float] = None) -> bool:
        """
        Probe a host.

        Args:
            url: Host URL, defaults to the configured one
            timeout: Seconds before the host is considered unreachable

        Returns:
            True if the host answered in time
        """
        if self.pending:
            logger.debug("Superseding pending network probe")
            self._task.cancel()

        task = self._task = asyncio.ensure_future(
            self._reach(url or self.url, self.timeout if timeout is None else timeout)
        )

        while True:
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                if task.cancelled() and self._task is not None and task is not self._task:
                    # Superseded, follow the newer probe
                    task = self._task
                    continue
                raise

    async def _reach(self, url: str, timeout: float) -> bool:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            async with aiohttp.ClientSession(
                timeout=client_timeout,
                headers={"User-Agent": APP_USER_AGENT},
            ) as session:
                async with session.head(url, allow_redirects=False) as response:
                    logger.debug(f"Network probe of {url} answered {response.status}")
                    return True
        except asyncio.TimeoutError:
            logger.info(f"No answer from {url} within {timeout}s, assuming offline")
            return False
        except (aiohttp.ClientError, OSError) as e:
            logger.info(f"Cannot reach {url}: {e}")
            return False

    def cancel(self) -> None:
        """Abort the pending probe, if any."""
        if self.pending:
            self._task.cancel()
        self._task = None
