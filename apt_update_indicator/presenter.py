"""
Status presenter interface and the notification policy.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .constants import MAX_NOTIFICATION_LINES
from .models import Category, CheckStatus, PackageEntry

_WHITESPACE_RUN = re.compile(r'\s\s+')


class StatusPresenter:
    """
    Receives the published state of an UpdateManager.

    Every method is a no-op here; hosts override what they display. All calls
    happen on the event loop thread.
    """

    def on_status_changed(self, status: CheckStatus) -> None:
        """The summary status changed."""

    def on_category_updated(self, category: Category, entries: List[PackageEntry]) -> None:
        """A category list was replaced by the result of a completed listing."""

    def on_checking_state_changed(self, checking: bool) -> None:
        """An upgrades check started or ended."""

    def on_last_check_changed(self, last_check: datetime) -> None:
        """A check completed and its date was recorded."""

    def on_notification(self, title: str, lines: List[str]) -> None:
        """New updates are worth telling the user about."""


@dataclass(frozen=True)
class Notification:
    title: str
    lines: List[str]


def notification_line(entry: PackageEntry) -> str:
    """One package as shown in a notification: tabs collapsed to one space."""
    return _WHITESPACE_RUN.sub(' ', str(entry).replace('\t', ' '))


def build_notification(count: int, entries: Sequence[PackageEntry],
                       previous_lines: Iterable[str], verbosity: int) -> Optional[Notification]:
    """
    Decide what to tell the user after a check found `count` upgrades.

    Args:
        count: Number of pending upgrades
        entries: The filtered upgrades list
        previous_lines: Upgrades list at the previous notification, as strings
        verbosity: 0 for a summary, 1 for the new packages, 2 for all packages

    Returns:
        The notification, or None if there is nothing new to say
    """
    if count <= 0:
        return None

    if verbosity <= 0:
        title = "New Update" if count == 1 else "New Updates"
        body = f"There is {count} update pending" if count == 1 else f"There are {count} updates pending"
        return Notification(title, [body])

    if verbosity == 1:
        previous = set(previous_lines)
        entries = [entry for entry in entries if str(entry) not in previous]

    lines = [notification_line(entry) for entry in entries][:MAX_NOTIFICATION_LINES]
    if not lines:
        return None
    return Notification("New Update" if len(lines) == 1 else "New Updates", lines)
