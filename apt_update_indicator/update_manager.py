"""
Orchestration of update checks: triggers, child processes and published state.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set

from .config import Config, Settings
from .constants import (
    IGNORE_LIST_DEBOUNCE, INITIAL_RUN_DELAY, INITIALIZING_BACKOFF,
    MINIMUM_BACKOFF, WATCHED_DIRECTORIES
)
from .exceptions import SpawnFailed, StateStoreError
from .filtering import filter_packages, partition_urgent
from .models import (
    AUXILIARY_CATEGORIES, CHECKING, ERROR, IDLE, INITIALIZING, NO_INTERNET,
    Category, CheckStatus, PackageEntry, RunningCheck, StateSnapshot,
    StatusKind, TriggerSource
)
from .presenter import StatusPresenter, build_notification
from .utils.change_watcher import ChangeWatcher
from .utils.logger import get_logger
from .utils.network_probe import NetworkProbe
from .utils.process_runner import ProcessResult, ProcessRunner
from .utils.state_store import StateStore
from .utils.subprocess_wrapper import SecureSubprocess
from .utils.timer_manager import TimerManager

logger = get_logger(__name__)

RunnerFactory = Callable[[Sequence[str]], Any]

# Triggers that run the privileged check command before listing
FULL_CHECK_SOURCES = {TriggerSource.TIMER, TriggerSource.MANUAL}

# Triggers after which the last check date is recorded
DATED_SOURCES = {TriggerSource.TIMER, TriggerSource.MANUAL}


class _CycleCancelled(Exception):
    """The running cycle was cancelled through cancel_check()."""


class UpdateManager:
    """
    Runs update checks and publishes one consistent status to a presenter.

    An upgrades cycle is: optional network probe, the privileged check
    command, the upgrades listing script, the optional urgency script, then
    the enabled auxiliary listings. At most one cycle runs at a time, at most
    one process runs per category, and applying updates shares the privileged
    slot with the check command. Everything runs on one event loop.
    """

    def __init__(self, config: Config,
                 presenter: Optional[StatusPresenter] = None,
                 state_store: Optional[StateStore] = None,
                 probe: Optional[NetworkProbe] = None,
                 watcher: Optional[ChangeWatcher] = None,
                 runner_factory: Optional[RunnerFactory] = None,
                 watch_paths: Iterable[str] = WATCHED_DIRECTORIES) -> None:
        """
        Initialize the manager.

        Args:
            config: Settings source; snapshotted at the start of every check
            presenter: Receiver of the published state
            state_store: Persistence for state kept across restarts
            probe: Network probe used when `check_network` is set
            watcher: Package directory watcher, built from `watch_paths` if omitted
            runner_factory: Builds a process runner from an argument vector
            watch_paths: Directories whose changes trigger a relisting
        """
        self.config = config
        self.presenter = presenter or StatusPresenter()
        self.state_store = state_store
        self.probe = probe or NetworkProbe()
        self.watcher = watcher or ChangeWatcher(watch_paths, self._on_directory_changed)
        self._runner_factory: RunnerFactory = runner_factory or ProcessRunner
        self._timers = TimerManager("update_manager")

        self._state = state_store.load() if state_store else StateSnapshot()
        self._status: CheckStatus = INITIALIZING
        self._last_completed: Optional[CheckStatus] = None
        self._previous_count = self._state.status.count
        self._results: Dict[Category, List[PackageEntry]] = {category: [] for category in Category}

        self._running: Dict[Category, RunningCheck] = {}
        self._privileged: Optional[RunningCheck] = None
        self._cycle_privileged: Optional[RunningCheck] = None
        self._cycle: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        self._initializing = True
        self._cancel_requested = False
        self._started = False
        self._destroyed = False

    # Published state

    @property
    def status(self) -> CheckStatus:
        """The published status."""
        return self._status

    @property
    def checking(self) -> bool:
        """True while an upgrades cycle runs."""
        return self._cycle is not None and not self._cycle.done()

    @property
    def applying(self) -> bool:
        """True while the update command runs."""
        return self._privileged is not None and not self.checking

    @property
    def initializing(self) -> bool:
        """True until the first upgrades listing has completed."""
        return self._initializing

    @property
    def last_check(self) -> Optional[datetime]:
        return self._state.last_check

    @property
    def last_automatic_check(self) -> Optional[datetime]:
        return self._state.last_automatic_check

    def results(self, category: Category) -> List[PackageEntry]:
        """Latest list of `category`."""
        return list(self._results[category])

    def is_running(self, category: Category) -> bool:
        """True while a process of `category` runs."""
        check = self._running.get(category)
        return check is not None and check.active

    # Lifecycle

    def start(self, initial_delay: float = INITIAL_RUN_DELAY) -> None:
        """
        Publish the initial state and schedule the first listing.

        Must be called from a running event loop.

        Args:
            initial_delay: Seconds before the first upgrades listing
        """
        if self._started:
            return
        self._started = True

        self._emit("on_status_changed", self._status)
        if self._state.last_check:
            self._emit("on_last_check_changed", self._state.last_check)

        self._timers.schedule("initial", initial_delay,
                              lambda: self._trigger(TriggerSource.INITIAL))
        self._schedule_interval()
        self.config.connect(None, self._on_setting_changed)
        logger.info(f"Update manager started, first listing in {initial_delay:.0f}s")

    def destroy(self) -> None:
        """Terminate every child process and cancel timers, probe and watcher."""
        if self._destroyed:
            return
        self._destroyed = True
        logger.info("Shutting down update manager")

        self.config.disconnect(self._on_setting_changed)
        self._timers.cancel_all()
        self.watcher.stop()
        self.probe.cancel()

        for check in self._live_checks():
            check.runner.cancel()
        for task in list(self._tasks):
            task.cancel()

    async def shutdown(self) -> None:
        """destroy(), then wait until all children are reaped and tasks have ended."""
        checks = self._live_checks()
        tasks = list(self._tasks)
        self.destroy()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for check in checks:
            await check.runner.wait_closed()

    async def wait_until_idle(self) -> None:
        """Wait until no cycle, listing or update command is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _live_checks(self) -> List[RunningCheck]:
        checks = list(self._running.values())
        if self._privileged is not None:
            checks.append(self._privileged)
        return checks

    # Triggers

    def check_now(self, source: TriggerSource = TriggerSource.MANUAL) -> bool:
        """
        Refresh the package index, then list upgrades.

        Returns:
            False if the trigger was dropped because a check or update runs
        """
        return self._trigger(source)

    def refresh_upgrades(self, source: TriggerSource = TriggerSource.FOLDER_CHANGE) -> bool:
        """
        List upgrades without refreshing the package index.

        Returns:
            False if the trigger was dropped because a check or update runs
        """
        return self._trigger(source)

    def apply_updates(self) -> bool:
        """
        Launch the configured update command, then relist upgrades.

        Returns:
            False if a check or another update runs, or the command is invalid
        """
        if self._destroyed:
            return False
        if self.checking or self._privileged is not None:
            logger.info("Apply updates rejected: a check or update is already running")
            return False

        try:
            argv = self.config.snapshot().update_command
        except SpawnFailed as e:
            logger.error(f"Invalid update command: {e}")
            return False

        self._privileged = RunningCheck(Category.UPGRADES, self._runner_factory(argv))
        self._spawn(self._apply(self._privileged))
        return True

    def cancel_check(self) -> bool:
        """
        Stop the running cycle; its processes are terminated.

        Returns:
            False if no cycle runs or it is already being cancelled
        """
        if not self.checking or self._cancel_requested:
            return False
        self._cancel_requested = True
        logger.info("Cancelling update check")

        self.probe.cancel()
        if self._privileged is not None and self._privileged is self._cycle_privileged:
            self._privileged.runner.cancel()
        for check in list(self._running.values()):
            check.runner.cancel()
        return True

    def _trigger(self, source: TriggerSource) -> bool:
        if self._destroyed:
            return False
        if self.checking or self._privileged is not None:
            logger.info(f"Check from {source.value} dropped: a check or update is already running")
            return False

        self._timers.cancel("initial")
        self._cancel_requested = False
        self._cycle = self._spawn(self._run_cycle(source))
        return True

    # Upgrades cycle

    async def _run_cycle(self, source: TriggerSource) -> None:
        settings = self.config.snapshot()
        initializing = self._initializing
        logger.info(f"Starting update check ({source.value})")

        self.watcher.stop()
        self._emit("on_checking_state_changed", True)
        self._publish(CHECKING)

        upgrades_done = False
        try:
            status = await self._upgrades_stage(source, settings, initializing)
            upgrades_done = True
            self._complete(status, settings)
            if status.kind is not StatusKind.NO_INTERNET:
                await self._fan_out(settings, initializing)
        except _CycleCancelled:
            logger.info("Update check cancelled")
            if not upgrades_done:
                self._emit("on_checking_state_changed", False)
                self._publish(self._last_completed or IDLE)
        finally:
            self._cancel_requested = False
            self._cycle_privileged = None
            if not self._destroyed:
                self.watcher.start()

    async def _upgrades_stage(self, source: TriggerSource, settings: Settings,
                              initializing: bool) -> CheckStatus:
        """Run probe, check command, listing and urgency; return the status to publish."""
        if source in FULL_CHECK_SOURCES:
            if settings.check_network and not await self._probe_network():
                logger.warning("No internet connection, skipping update check")
                return NO_INTERNET

            try:
                argv = settings.check_command
            except SpawnFailed as e:
                logger.error(f"Invalid check command: {e}")
                return ERROR

            check = self._cycle_privileged = self._privileged = RunningCheck(
                Category.UPGRADES, self._runner_factory(argv))
            try:
                result = await check.runner.run()
            finally:
                if self._privileged is check:
                    self._privileged = None
            self._raise_if_cancelled(result)
            if result.error is not None:
                return ERROR

        result = await self._run_script(Category.UPGRADES, settings, initializing)
        self._raise_if_cancelled(result)
        if result is None or result.error is not None:
            return ERROR

        entries = filter_packages(result.lines, settings.ignore_list, settings.strip_versions)

        urgent: List[PackageEntry] = []
        if settings.show_critical_updates and entries:
            urgency = await self._run_script(Category.URGENT, settings, initializing)
            self._raise_if_cancelled(urgency)
            if urgency is not None and urgency.ok:
                urgent = partition_urgent(entries, urgency.lines)

        self._results[Category.UPGRADES] = entries
        self._results[Category.URGENT] = urgent
        self._emit("on_category_updated", Category.UPGRADES, list(entries))
        self._emit("on_category_updated", Category.URGENT, list(urgent))
        self._record_last_check(source)
        return CheckStatus.from_count(len(entries))

    async def _probe_network(self) -> bool:
        try:
            return await self.probe.probe()
        except asyncio.CancelledError:
            if self._cancel_requested and not self._destroyed:
                raise _CycleCancelled() from None
            raise

    def _raise_if_cancelled(self, result: Optional[ProcessResult]) -> None:
        if self._cancel_requested or (result is not None and result.cancelled):
            raise _CycleCancelled()

    def _complete(self, status: CheckStatus, settings: Settings) -> None:
        """Publish the outcome of an upgrades stage and persist it."""
        self._initializing = False
        self._last_completed = status
        self._emit("on_checking_state_changed", False)
        self._publish(status)

        count = status.count
        entries = self._results[Category.UPGRADES]
        if settings.notify and count > self._previous_count:
            notification = build_notification(count, entries, self._state.upgrades, settings.verbosity)
            if notification is not None:
                self._emit("on_notification", notification.title, notification.lines)

        self._previous_count = count
        self._state.status = status
        if status.kind is StatusKind.UPDATES_PENDING:
            self._state.upgrades = [str(entry) for entry in entries]
        elif status.kind is StatusKind.UP_TO_DATE:
            self._state.upgrades = []
        self._save_state()

        logger.info(f"Update check finished: {status}")

    def _record_last_check(self, source: TriggerSource) -> None:
        if source not in DATED_SOURCES:
            return
        now = datetime.now()
        self._state.last_check = now
        if source is TriggerSource.TIMER:
            self._state.last_automatic_check = now
        self._emit("on_last_check_changed", now)

    def _save_state(self) -> None:
        if self.state_store is None:
            return
        try:
            self.state_store.save(self._state)
        except StateStoreError as e:
            logger.error(str(e))

    # Category listings

    async def _fan_out(self, settings: Settings, initializing: bool) -> None:
        categories = settings.enabled_categories
        if not categories:
            return
        await asyncio.gather(*(self._list_category(category, settings, initializing)
                               for category in categories))
        if self._cancel_requested:
            raise _CycleCancelled()

    async def _list_category(self, category: Category, settings: Settings,
                             initializing: bool) -> None:
        result = await self._run_script(category, settings, initializing)
        if result is None or not result.ok:
            return
        entries = filter_packages(result.lines)
        self._results[category] = entries
        self._emit("on_category_updated", category, list(entries))

    async def _run_script(self, category: Category, settings: Settings,
                          initializing: bool) -> Optional[ProcessResult]:
        """
        Run the listing script of `category` in its slot.

        Returns:
            The result, or None if the category was already running
        """
        existing = self._running.get(category)
        if existing is not None and existing.active:
            logger.info(f"{category.value} listing dropped: already running")
            return None

        argv = SecureSubprocess.script_command(settings.scripts_dir, category, initializing)
        check = RunningCheck(category, self._runner_factory(argv))
        self._running[category] = check
        try:
            result = await check.runner.run()
        finally:
            if self._running.get(category) is check:
                del self._running[category]

        if result.error is not None:
            logger.warning(f"{category.value} listing failed: {result.error}")
        else:
            logger.debug(f"{category.value} listing returned {len(result.lines)} lines")
        return result

    def _start_category(self, category: Category) -> None:
        settings = self.config.snapshot()
        self._spawn(self._list_category(category, settings, self._initializing))

    # Apply updates

    async def _apply(self, check: RunningCheck) -> None:
        logger.info("Applying updates")
        try:
            result = await check.runner.run()
        finally:
            if self._privileged is check:
                self._privileged = None

        if result.error is not None:
            logger.error(f"Update command failed to start: {result.error}")
        elif result.cancelled:
            return
        else:
            logger.info(f"Update command exited with {result.returncode}")
        self.refresh_upgrades(TriggerSource.APPLY_UPDATES)

    # Timers and events

    def _schedule_interval(self) -> None:
        """Schedule the next automatic check, relative to the last one."""
        self._timers.cancel("interval")
        interval = self.config.snapshot().interval_seconds
        if not interval:
            logger.info("Automatic checks disabled")
            return

        last = self._state.last_automatic_check
        if last is None:
            delay = -1.0
        else:
            delay = interval - (datetime.now() - last).total_seconds()
        if delay < MINIMUM_BACKOFF:
            delay = INITIALIZING_BACKOFF if self._initializing else MINIMUM_BACKOFF

        self._timers.schedule("interval", delay, self._on_interval)
        logger.debug(f"Next automatic check in {delay:.0f}s")

    def _on_interval(self) -> None:
        self.check_now(TriggerSource.TIMER)
        interval = self.config.snapshot().interval_seconds
        if interval:
            self._timers.schedule("interval", interval, self._on_interval)

    def _on_directory_changed(self) -> None:
        self.refresh_upgrades(TriggerSource.FOLDER_CHANGE)

    def _on_setting_changed(self, key: str, value: Any) -> None:
        if key in ("check_interval", "interval_unit"):
            self._schedule_interval()
        elif key in ("strip_versions", "show_critical_updates"):
            self.refresh_upgrades(TriggerSource.SETTINGS)
        elif key == "ignore_list":
            self._timers.schedule("ignore_list", IGNORE_LIST_DEBOUNCE,
                                  lambda: self.refresh_upgrades(TriggerSource.SETTINGS))
        else:
            for category, flag in AUXILIARY_CATEGORIES.items():
                if key != flag:
                    continue
                if value:
                    self._start_category(category)
                else:
                    self._results[category] = []
                    self._emit("on_category_updated", category, [])

    # Helpers

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Update task failed: {error}", exc_info=error)

    def _publish(self, status: CheckStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._emit("on_status_changed", status)

    def _emit(self, method: str, *args: Any) -> None:
        if self._destroyed:
            return
        try:
            getattr(self.presenter, method)(*args)
        except Exception as e:
            logger.error(f"Presenter {method} failed: {e}", exc_info=True)
