"""
Command line parsing and validation for the child processes we launch.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

import os
import shlex
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..constants import PRIVILEGE_WRAPPER, SCRIPT_SHELL
from ..exceptions import SpawnFailed
from ..models import Category
from .logger import get_logger, log_security_event, sanitize_log_message

logger = get_logger(__name__)


class SecureSubprocess:
    """Builds and validates argument vectors; never goes through a shell."""

    # Wrappers that run the rest of the command with elevated privileges
    PRIVILEGE_WRAPPERS = {'pkexec', 'sudo', 'doas'}

    @staticmethod
    def parse_command(command: Union[str, Sequence[str]]) -> List[str]:
        """
        Split a command string the way a POSIX shell would.

        Args:
            command: Command string, or an already split argument vector

        Returns:
            Argument vector

        Raises:
            SpawnFailed: If the string cannot be parsed or is empty
        """
        if isinstance(command, (list, tuple)):
            argv = [str(arg) for arg in command]
        else:
            try:
                argv = shlex.split(command or "")
            except ValueError as e:
                raise SpawnFailed(f"Cannot parse command line: {e}") from e

        if not argv:
            raise SpawnFailed("Empty command")
        return argv

    @classmethod
    def with_privilege(cls, argv: Sequence[str], wrapper: str = PRIVILEGE_WRAPPER) -> List[str]:
        """Prefix `argv` with the privilege wrapper unless it already has one."""
        argv = list(argv)
        if argv and os.path.basename(argv[0]) in cls.PRIVILEGE_WRAPPERS:
            return argv
        return [wrapper] + argv

    @classmethod
    def is_privileged(cls, argv: Sequence[str]) -> bool:
        """True when the command runs through a privilege wrapper."""
        return bool(argv) and os.path.basename(argv[0]) in cls.PRIVILEGE_WRAPPERS

    @staticmethod
    def resolve_executable(command: str) -> Optional[str]:
        """
        Find the absolute path of an executable.

        Args:
            command: Command name or path

        Returns:
            Absolute path if the command exists and is executable, None otherwise
        """
        if os.sep in command:
            path = Path(command)
            if path.is_file() and os.access(path, os.X_OK):
                return str(path)
            return None
        return shutil.which(command)

    @classmethod
    def validate_command(cls, argv: Sequence[str]) -> List[str]:
        """
        Check that a command can be started.

        Args:
            argv: Argument vector

        Returns:
            The argument vector with the executable resolved to an absolute path

        Raises:
            SpawnFailed: If the executable is missing or not executable
        """
        if not argv:
            raise SpawnFailed("Empty command")

        resolved = cls.resolve_executable(argv[0])
        if resolved is None:
            raise SpawnFailed("Executable not found or not executable", argv)

        if cls.is_privileged(argv):
            log_security_event(
                "PRIVILEGED_COMMAND_EXECUTION",
                {"wrapper": os.path.basename(argv[0]),
                 "command": argv[1] if len(argv) > 1 else "",
                 "args_count": len(argv)},
                severity="info"
            )

        logger.debug(sanitize_log_message(f"Running command: {' '.join(argv)}"))
        return [resolved] + list(argv[1:])

    @staticmethod
    def script_command(scripts_dir: Union[str, Path], category: Category,
                       initializing: bool = False) -> List[str]:
        """
        Build the invocation of a listing script.

        Args:
            scripts_dir: Directory holding the listing scripts
            category: Category whose script to run
            initializing: True on the first run, when scripts only read existing state

        Returns:
            Argument vector
        """
        script = Path(scripts_dir) / category.script_name
        return [SCRIPT_SHELL, str(script), '1' if initializing else '0']
