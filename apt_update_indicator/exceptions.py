"""
Custom exceptions for Apt Update Indicator.
"""

# SPDX-License-Identifier: GPL-3.0-or-later


class AptUpdateIndicatorError(Exception):
    """Base exception for all Apt Update Indicator errors."""

    pass


class ProcessError(AptUpdateIndicatorError):
    """Raised when a child process cannot be run."""

    pass


class SpawnFailed(ProcessError):
    """A child process could not be started.

    Carried inside a ProcessResult rather than raised across the event loop.
    """

    def __init__(self, reason: str, argv=None) -> None:
        """Initialize the error."""
        super().__init__(reason)
        self.reason = reason
        self.argv = list(argv) if argv else []

    def __str__(self) -> str:
        if self.argv:
            return f"{self.reason} (command: {self.argv[0]})"
        return self.reason


class ConfigurationError(AptUpdateIndicatorError):
    """Raised when configuration is invalid or cannot be saved."""

    pass


class StateStoreError(AptUpdateIndicatorError):
    """Raised when the state snapshot cannot be written."""

    pass
