"""
Data models for Apt Update Indicator.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum


class Category(Enum):
    """Package status category, each backed by one listing script."""
    UPGRADES = "get-updates"
    NEW = "new"
    OBSOLETE = "obsolete"
    RESIDUAL = "residual"
    AUTOREMOVABLE = "autoremovable"
    URGENT = "urgency"

    @property
    def script_name(self) -> str:
        """File name of the listing script for this category."""
        return f"{self.value}.sh"


# Categories fanned out after the upgrades check, with their settings flag
AUXILIARY_CATEGORIES = {
    Category.NEW: "new_packages",
    Category.OBSOLETE: "obsolete_packages",
    Category.RESIDUAL: "residual_packages",
    Category.AUTOREMOVABLE: "autoremovable_packages",
}


class StatusKind(Enum):
    """Kind of the published check status."""
    UNKNOWN = "unknown"
    INITIALIZING = "initializing"
    ERROR = "error"
    NO_INTERNET = "no_internet"
    IDLE = "idle"
    CHECKING = "checking"
    UP_TO_DATE = "up_to_date"
    UPDATES_PENDING = "updates_pending"


@dataclass(frozen=True)
class CheckStatus:
    """Published status; `count` is only meaningful for UPDATES_PENDING."""
    kind: StatusKind
    count: int = 0

    def __post_init__(self) -> None:
        """Validate the pending count."""
        if self.kind is StatusKind.UPDATES_PENDING:
            if self.count <= 0:
                raise ValueError("UpdatesPending requires a positive count")
        elif self.count != 0:
            raise ValueError(f"{self.kind.value} status does not carry a count")

    @classmethod
    def updates_pending(cls, count: int) -> 'CheckStatus':
        """Build an UPDATES_PENDING status."""
        return cls(StatusKind.UPDATES_PENDING, count)

    @classmethod
    def from_count(cls, count: int) -> 'CheckStatus':
        """Status of a completed check that found `count` upgrades."""
        if count > 0:
            return cls.updates_pending(count)
        return cls(StatusKind.UP_TO_DATE)

    @property
    def is_failure(self) -> bool:
        """True for the terminal failure states."""
        return self.kind in (StatusKind.ERROR, StatusKind.NO_INTERNET)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"kind": self.kind.value, "count": self.count}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CheckStatus':
        """Create from dictionary, falling back to UNKNOWN."""
        try:
            kind = StatusKind(data.get("kind", "unknown"))
            return cls(kind, int(data.get("count", 0)))
        except (ValueError, TypeError):
            return UNKNOWN

    def __str__(self) -> str:
        if self.kind is StatusKind.UPDATES_PENDING:
            return f"{self.count} update{'s' if self.count != 1 else ''} pending"
        return self.kind.value.replace("_", " ")


UNKNOWN = CheckStatus(StatusKind.UNKNOWN)
INITIALIZING = CheckStatus(StatusKind.INITIALIZING)
ERROR = CheckStatus(StatusKind.ERROR)
NO_INTERNET = CheckStatus(StatusKind.NO_INTERNET)
IDLE = CheckStatus(StatusKind.IDLE)
CHECKING = CheckStatus(StatusKind.CHECKING)
UP_TO_DATE = CheckStatus(StatusKind.UP_TO_DATE)


class TriggerSource(Enum):
    """What asked for an upgrades check."""
    TIMER = "timer"
    MANUAL = "manual"
    FOLDER_CHANGE = "folder_change"
    APPLY_UPDATES = "apply_updates"
    SETTINGS = "settings"
    INITIAL = "initial"


@dataclass(frozen=True)
class PackageEntry:
    """One package line from a listing script."""
    name: str
    version: Optional[str] = None

    def without_version(self) -> 'PackageEntry':
        """Copy carrying the name only."""
        if self.version is None:
            return self
        return PackageEntry(self.name)

    def __str__(self) -> str:
        """Tab separated form, as written by the listing scripts."""
        if self.version is None:
            return self.name
        return f"{self.name}\t{self.version}"


@dataclass
class RunningCheck:
    """An in-flight process owned by one category slot."""
    category: Category
    runner: Any
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def active(self) -> bool:
        """True until the runner has resolved."""
        return not self.runner.finished


@dataclass
class StateSnapshot:
    """State kept across restarts of the indicator."""
    status: CheckStatus = UNKNOWN
    upgrades: List[str] = field(default_factory=list)
    last_check: Optional[datetime] = None
    last_automatic_check: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.to_dict(),
            "upgrades": list(self.upgrades),
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "last_automatic_check": (
                self.last_automatic_check.isoformat() if self.last_automatic_check else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StateSnapshot':
        """Create from dictionary."""
        def _parse_date(value: Any) -> Optional[datetime]:
            if not isinstance(value, str):
                return None
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                return None

        upgrades = data.get("upgrades", [])
        if not isinstance(upgrades, list):
            upgrades = []

        return cls(
            status=CheckStatus.from_dict(data.get("status") or {}),
            upgrades=[str(line) for line in upgrades],
            last_check=_parse_date(data.get("last_check")),
            last_automatic_check=_parse_date(data.get("last_automatic_check")),
        )


@dataclass
class AppConfig:
    """Application configuration, as stored in the JSON config file."""
    check_interval: int = 1
    interval_unit: str = "days"
    check_network: bool = True
    strip_versions: bool = False
    show_critical_updates: bool = True
    ignore_list: str = ""
    new_packages: bool = False
    obsolete_packages: bool = False
    residual_packages: bool = False
    autoremovable_packages: bool = False
    use_custom_cmd: bool = False
    check_cmd_custom: str = ""
    update_cmd_options: int = 0
    update_cmd: str = ""
    output_on_terminal: bool = False
    terminal: str = "gnome-terminal -x bash -c"
    notify: bool = False
    verbosity: int = 0
    scripts_dir: Optional[str] = None
    debug_mode: bool = False
    verbose_logging: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {name: getattr(self, name) for name in self.__dataclass_fields__}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppConfig':
        """Create from dictionary, ignoring unknown keys."""
        known = {key: value for key, value in data.items() if key in cls.__dataclass_fields__}
        return cls(**known)
