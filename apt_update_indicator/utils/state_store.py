"""
Persistence of the indicator state between runs.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

import fcntl
import json
import os
from pathlib import Path
from typing import Optional, Union

from ..constants import CACHE_DIR_PERMISSIONS, CONFIG_FILE_PERMISSIONS, get_default_state_path
from ..exceptions import StateStoreError
from ..models import StateSnapshot
from .logger import get_logger

logger = get_logger(__name__)


class StateStore:
    """Reads and writes the StateSnapshot JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize the store.

        Args:
            path: Path to the state file (defaults to the cache dir)
        """
        self.path = Path(path) if path else get_default_state_path()

    def load(self) -> StateSnapshot:
        """
        Load the last saved snapshot.

        Returns:
            The snapshot, or an empty one if the file is missing or corrupted
        """
        if not self.path.exists():
            return StateSnapshot()

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = json.load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted state file {self.path}: {e}")
            return StateSnapshot()
        except OSError as e:
            logger.error(f"Failed to read state file {self.path}: {e}")
            return StateSnapshot()

        if not isinstance(data, dict):
            logger.error(f"Unexpected content in state file {self.path}")
            return StateSnapshot()

        snapshot = StateSnapshot.from_dict(data)
        logger.debug(f"Loaded state: {snapshot.status}, {len(snapshot.upgrades)} upgrades")
        return snapshot

    def save(self, snapshot: StateSnapshot) -> None:
        """
        Write the snapshot atomically.

        Raises:
            StateStoreError: If the file cannot be written
        """
        temp_path = self.path.with_suffix('.tmp')
        try:
            if not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, mode=CACHE_DIR_PERMISSIONS)

            with open(temp_path, 'w', encoding='utf-8') as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    json.dump(snapshot.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)

            os.chmod(temp_path, CONFIG_FILE_PERMISSIONS)
            temp_path.replace(self.path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StateStoreError(f"Failed to save state to {self.path}: {e}") from e

        logger.debug(f"Saved state to {self.path}")
