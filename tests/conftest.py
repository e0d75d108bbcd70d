"""
Pytest configuration and shared fakes.
"""

import asyncio
import os
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from apt_update_indicator.config import Config
from apt_update_indicator.exceptions import SpawnFailed
from apt_update_indicator.presenter import StatusPresenter
from apt_update_indicator.utils.process_runner import ProcessResult


def pytest_configure(config):
    """Configure pytest - set up the test environment."""
    os.environ['APT_UPDATE_INDICATOR_TEST_MODE'] = '1'


@pytest.fixture(autouse=True)
def isolated_home(tmp_path_factory, monkeypatch):
    """Keep config, cache and logs of every test inside a tmp dir."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def config(tmp_path):
    """Config backed by a temporary file, network probing off."""
    cfg = Config(str(tmp_path / "config.json"))
    cfg.apply_overrides({"check_network": False, "show_critical_updates": False})
    return cfg


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def runner_key(argv: Sequence[str]) -> str:
    """'get-updates.sh' for listing scripts, the executable name otherwise."""
    if len(argv) > 1 and os.path.basename(argv[0]) == 'bash':
        return os.path.basename(argv[1])
    return os.path.basename(argv[0])


class FakeRunner:
    """ProcessRunner stand-in that resolves with canned output."""

    def __init__(self, argv: Sequence[str], lines: Iterable[str] = (),
                 error: Optional[str] = None, hold: bool = False):
        self.argv = list(argv)
        self.key = runner_key(argv)
        self.lines = list(lines)
        self.error = error
        self.hold = hold
        self.result: Optional[ProcessResult] = None
        self.cancel_calls = 0
        self.started = False
        self._future: Optional[asyncio.Future] = None

    @property
    def finished(self) -> bool:
        return self.result is not None

    async def run(self) -> ProcessResult:
        self.started = True
        if self.result is not None:
            return self.result
        self._future = asyncio.get_running_loop().create_future()
        if self.error is not None:
            self._resolve(ProcessResult(error=SpawnFailed(self.error, self.argv)))
        elif not self.hold:
            self.release()
        return await asyncio.shield(self._future)

    def release(self) -> None:
        self._resolve(ProcessResult(lines=list(self.lines), returncode=0))

    def cancel(self) -> bool:
        if self.result is not None:
            return False
        self.cancel_calls += 1
        self._resolve(ProcessResult(cancelled=True))
        return True

    async def wait_closed(self) -> None:
        return None

    def _resolve(self, result: ProcessResult) -> None:
        if self.result is not None:
            return
        self.result = result
        if self._future is not None and not self._future.done():
            self._future.set_result(result)


class FakeRunnerFactory:
    """Builds FakeRunners and records every spawn."""

    def __init__(self, outputs: Optional[Dict[str, List[str]]] = None):
        self.outputs = outputs or {}
        self.held: set = set()
        self.failing: set = set()
        self.runners: List[FakeRunner] = []

    def __call__(self, argv: Sequence[str]) -> FakeRunner:
        key = runner_key(argv)
        runner = FakeRunner(
            argv,
            lines=self.outputs.get(key, []),
            error="Executable not found" if key in self.failing else None,
            hold=key in self.held,
        )
        self.runners.append(runner)
        return runner

    def spawned(self, key: str) -> List[FakeRunner]:
        return [runner for runner in self.runners if runner.key == key]

    def keys(self) -> List[str]:
        return [runner.key for runner in self.runners]


class FakeProbe:
    """NetworkProbe stand-in."""

    def __init__(self, online: bool = True):
        self.online = online
        self.calls = 0
        self.cancelled = 0

    async def probe(self, url=None, timeout=None) -> bool:
        self.calls += 1
        return self.online

    def cancel(self) -> None:
        self.cancelled += 1


class FakeWatcher:
    """ChangeWatcher stand-in recording start/stop."""

    def __init__(self):
        self.active = False
        self.starts = 0
        self.stops = 0

    def start(self) -> None:
        self.starts += 1
        self.active = True

    def stop(self) -> None:
        self.stops += 1
        self.active = False


class RecordingPresenter(StatusPresenter):
    """Presenter that keeps every call."""

    def __init__(self):
        self.statuses = []
        self.categories = []
        self.checking = []
        self.last_checks = []
        self.notifications = []

    def on_status_changed(self, status):
        self.statuses.append(status)

    def on_category_updated(self, category, entries):
        self.categories.append((category, list(entries)))

    def on_checking_state_changed(self, checking):
        self.checking.append(checking)

    def on_last_check_changed(self, last_check):
        self.last_checks.append(last_check)

    def on_notification(self, title, lines):
        self.notifications.append((title, list(lines)))

    def updates_for(self, category):
        return [entries for cat, entries in self.categories if cat is category]
