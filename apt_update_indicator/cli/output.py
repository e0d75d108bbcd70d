"""
Output formatting utilities for the CLI.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

import json
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from colorama import init, Fore, Style

from ..filtering import format_entries
from ..models import Category, CheckStatus, PackageEntry, StatusKind

# Initialize colorama for cross-platform color support
init(autoreset=True)

CATEGORY_TITLES = {
    Category.UPGRADES: "Upgradable packages",
    Category.URGENT: "Urgent upgrades",
    Category.NEW: "New in repository",
    Category.OBSOLETE: "Local or obsolete packages",
    Category.RESIDUAL: "Residual configuration",
    Category.AUTOREMOVABLE: "Autoremovable packages",
}


class OutputFormatter:
    """Handles output formatting for the CLI."""

    def __init__(self, use_color: bool = True, json_output: bool = False):
        """
        Initialize output formatter.

        Args:
            use_color: Whether to use ANSI colors
            json_output: Whether to output JSON
        """
        self.use_color = use_color
        self.json_output = json_output

        self.green = Fore.GREEN if use_color else ''
        self.yellow = Fore.YELLOW if use_color else ''
        self.red = Fore.RED if use_color else ''
        self.cyan = Fore.CYAN if use_color else ''
        self.white = Fore.WHITE if use_color else ''
        self.reset = Style.RESET_ALL if use_color else ''
        self.bright = Style.BRIGHT if use_color else ''

    def success(self, message: str) -> None:
        """Print success message."""
        if not self.json_output:
            print(f"{self.green}✅ {message}{self.reset}")

    def warning(self, message: str) -> None:
        """Print warning message."""
        if not self.json_output:
            print(f"{self.yellow}⚠️  {message}{self.reset}")

    def error(self, message: str) -> None:
        """Print error message."""
        if not self.json_output:
            print(f"{self.red}❌ {message}{self.reset}", file=sys.stderr)

    def info(self, message: str) -> None:
        """Print info message."""
        if not self.json_output:
            print(f"{self.cyan}ℹ️  {message}{self.reset}")

    def header(self, message: str) -> None:
        """Print header message."""
        if not self.json_output:
            print(f"\n{self.cyan}{self.bright}{message}{self.reset}")
            print(f"{self.cyan}{'─' * len(message)}{self.reset}")

    def status(self, status: CheckStatus) -> None:
        """Print a status line, colored by severity."""
        text = str(status).capitalize()
        if status.is_failure:
            self.error(text)
        elif status.kind is StatusKind.UPDATES_PENDING:
            self.warning(text)
        elif status.kind is StatusKind.UP_TO_DATE:
            self.success(text)
        else:
            self.info(text)

    def format_package_list(self, entries: List[PackageEntry],
                            max_name_length: Optional[int] = None) -> str:
        """
        Format package entries with aligned versions.

        Args:
            entries: Entries to format
            max_name_length: Align for names this long, to line up several lists

        Returns:
            Formatted list, tabs expanded
        """
        if not entries:
            return "  (none)"

        lines = []
        for entry, line in zip(entries, format_entries(entries, max_name_length)):
            line = "  " + line.expandtabs()
            if self.use_color and entry.version is not None:
                split = len(line) - len(entry.version)
                line = f"{self.white}{line[:split]}{self.reset}{self.green}{line[split:]}{self.reset}"
            lines.append(line)
        return '\n'.join(lines)

    def category(self, category: Category, entries: List[PackageEntry],
                 max_name_length: Optional[int] = None) -> None:
        """Print one category list with its title."""
        if self.json_output:
            return
        self.header(f"{CATEGORY_TITLES[category]} ({len(entries)})")
        print(self.format_package_list(entries, max_name_length))

    def format_date(self, value: Optional[datetime]) -> str:
        """Human readable check date."""
        if value is None:
            return "never"
        return value.strftime('%a %b %d, %H:%M')

    def output_json(self, data: Dict[str, Any]) -> None:
        """Output data as JSON."""
        print(json.dumps(data, indent=2, default=str))
