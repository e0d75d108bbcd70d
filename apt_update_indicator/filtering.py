"""
Parsing, filtering and formatting of package lines from the listing scripts.

All functions here are pure: same input, same output, no state.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

import re
from typing import Iterable, List, Optional, Sequence, Set, Union

from .constants import TAB_WIDTH
from .models import PackageEntry
from .utils.logger import get_logger

logger = get_logger(__name__)

# apt list style: "firefox/jammy-updates 101.0-1 amd64 [upgradable from: 100.0-1]"
APT_LIST_PATTERN = re.compile(r'^(?P<name>[^/\s]+)/\S*\s+(?P<version>\S+)')

# A bare package name, as written by scripts that list names only
PACKAGE_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9.+:~_-]*$')

Line = Union[str, PackageEntry]


def parse_line(line: Line) -> PackageEntry:
    """
    Split one output line into name and version.

    Recognized formats are "name<TAB>version", "name/suite version arch ..."
    and a bare package name. Anything else is kept whole as the name.

    Args:
        line: Raw output line, or an already parsed entry

    Returns:
        PackageEntry; never fails
    """
    if isinstance(line, PackageEntry):
        return line

    stripped = line.strip()

    if '\t' in line:
        name, version = line.split('\t', 1)
        name = name.strip()
        if name:
            return PackageEntry(name, version.strip() or None)
    else:
        match = APT_LIST_PATTERN.match(stripped)
        if match:
            return PackageEntry(match.group('name'), match.group('version'))

        if PACKAGE_NAME_PATTERN.match(stripped):
            return PackageEntry(stripped)

    logger.debug(f"Could not split package line, keeping it whole: {line!r}")
    return PackageEntry(line)


def split_entries(text: Optional[str]) -> List[str]:
    """
    Split a ';' separated list, dropping blanks and duplicates.

    Args:
        text: e.g. "vim; firefox;"

    Returns:
        ["vim", "firefox"]
    """
    if not text:
        return []
    entries: List[str] = []
    for item in text.split(';'):
        item = item.strip()
        if item and item not in entries:
            entries.append(item)
    return entries


def join_entries(entries: Iterable[str]) -> str:
    """Inverse of split_entries."""
    return ';'.join(entry.strip() for entry in entries if entry.strip())


def filter_packages(lines: Iterable[Line], ignore_list: Iterable[str] = (),
                    strip_versions: bool = False) -> List[PackageEntry]:
    """
    Parse lines, drop ignored packages and optionally drop versions.

    Args:
        lines: Raw lines or PackageEntry values
        ignore_list: Exact, case sensitive package names to drop
        strip_versions: Keep names only

    Returns:
        Entries in input order
    """
    ignored: Set[str] = set(ignore_list)
    result: List[PackageEntry] = []
    for line in lines:
        entry = parse_line(line)
        if entry.name in ignored:
            continue
        if strip_versions:
            entry = entry.without_version()
        result.append(entry)
    return result


def partition_urgent(entries: Sequence[PackageEntry], urgency_lines: Iterable[str]) -> List[PackageEntry]:
    """
    Select the entries named in the urgency script output.

    The urgency script prints changelog style lines such as
    "firefox-101.0 (urgency=high)"; an entry is urgent when some line
    contains its name followed by '-'.

    Returns:
        The urgent subset, in the order of `entries`
    """
    lines = list(urgency_lines)
    return [entry for entry in entries
            if any(f"{entry.name}-" in line for line in lines)]


def aligned_width(max_name_length: int, tab_width: int = TAB_WIDTH) -> int:
    """Column where versions start: the tab stop after the longest name, minus one."""
    return tab_width * (max_name_length // tab_width + 1) - 1


def format_entries(entries: Sequence[PackageEntry], max_name_length: Optional[int] = None,
                   tab_width: int = TAB_WIDTH) -> List[str]:
    """
    Render entries as lines with versions aligned on a tab stop.

    Args:
        entries: Entries to render
        max_name_length: Longest name to align for; defaults to the longest
            in `entries` (pass a larger value to align several lists together)
        tab_width: Tab width assumed by the display

    Returns:
        One line per entry; entries without a version render as the name only
    """
    if max_name_length is None:
        max_name_length = max((len(entry.name) for entry in entries), default=0)
    width = aligned_width(max_name_length, tab_width)

    lines = []
    for entry in entries:
        if entry.version is None:
            lines.append(entry.name)
            continue
        extra_tabs = max(0, width - len(entry.name)) // tab_width
        lines.append(entry.name + '\t' * (1 + extra_tabs) + entry.version)
    return lines
