"""
Tests for the UpdateManager orchestration.
"""

import asyncio
import json
import os
from datetime import datetime, timedelta

import pytest

from apt_update_indicator.constants import INITIALIZING_BACKOFF, MINIMUM_BACKOFF
from apt_update_indicator.models import (
    ERROR, IDLE, INITIALIZING, NO_INTERNET, UP_TO_DATE, CHECKING,
    Category, CheckStatus, PackageEntry, StateSnapshot, TriggerSource
)
from apt_update_indicator.update_manager import UpdateManager
from apt_update_indicator.utils.state_store import StateStore

from conftest import (
    FakeProbe, FakeRunnerFactory, FakeWatcher, RecordingPresenter, settle
)

UPGRADES = ["firefox\t101.0-1", "vim\t2:8.2-1"]


def make_manager(config, outputs=None, online=True, state_store=None):
    factory = FakeRunnerFactory(outputs if outputs is not None else {"get-updates.sh": list(UPGRADES)})
    presenter = RecordingPresenter()
    manager = UpdateManager(
        config,
        presenter=presenter,
        state_store=state_store,
        probe=FakeProbe(online),
        watcher=FakeWatcher(),
        runner_factory=factory,
    )
    return manager, factory, presenter


class TestUpgradesCycle:
    """Test a complete upgrades check."""

    def test_manual_check_publishes_pending_count(self, config):
        """Test check command, listing and status for a manual check."""
        async def scenario():
            manager, factory, presenter = make_manager(config)
            assert manager.check_now() is True
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory, presenter

        manager, factory, presenter = asyncio.run(scenario())

        assert factory.keys() == ["pkcon", "get-updates.sh"]
        assert factory.runners[0].argv == ["/usr/bin/pkcon", "refresh"]
        assert manager.status == CheckStatus.updates_pending(2)
        assert presenter.statuses == [CHECKING, CheckStatus.updates_pending(2)]
        assert presenter.checking == [True, False]
        assert manager.results(Category.UPGRADES) == [
            PackageEntry("firefox", "101.0-1"), PackageEntry("vim", "2:8.2-1")
        ]

    def test_ignore_list_applied_to_upgrades(self, config):
        """Test the firefox/vim scenario through the whole cycle."""
        config.apply_overrides({"ignore_list": "vim"})

        async def scenario():
            manager, _, _ = make_manager(config)
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.results(Category.UPGRADES) == [PackageEntry("firefox", "101.0-1")]
        assert manager.status == CheckStatus.updates_pending(1)

    def test_empty_listing_is_up_to_date(self, config):
        """Test status consistency for an empty result."""
        async def scenario():
            manager, _, _ = make_manager(config, outputs={})
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.status == UP_TO_DATE
        assert manager.results(Category.UPGRADES) == []

    def test_strip_versions(self, config):
        """Test entries carry names only when versions are stripped."""
        config.apply_overrides({"strip_versions": True})

        async def scenario():
            manager, _, _ = make_manager(config)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.results(Category.UPGRADES) == [PackageEntry("firefox"), PackageEntry("vim")]

    def test_refresh_skips_check_command(self, config):
        """Test a folder change only lists upgrades."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.refresh_upgrades(TriggerSource.FOLDER_CHANGE)
            await manager.wait_until_idle()
            await manager.shutdown()
            return factory

        factory = asyncio.run(scenario())

        assert factory.keys() == ["get-updates.sh"]

    def test_scripts_get_initializing_flag_once(self, config):
        """Test the first listing passes 1 and later ones 0."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            assert manager.initializing is True
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        first, second = factory.spawned("get-updates.sh")
        assert first.argv[-1] == "1"
        assert second.argv[-1] == "0"
        assert first.argv[0] == "/bin/bash"
        assert manager.initializing is False

    def test_settings_snapshot_taken_per_check(self, config):
        """Test a setting changed mid-check only affects the next check."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            factory.held.add("pkcon")
            manager.check_now()
            await settle()
            config.apply_overrides({"strip_versions": True})
            factory.spawned("pkcon")[0].release()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.results(Category.UPGRADES)[0] == PackageEntry("firefox", "101.0-1")


class TestSingleFlight:
    """Test at most one check runs at a time."""

    def test_second_trigger_dropped_while_checking(self, config):
        """Test a trigger during a check spawns nothing."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            factory.held.add("pkcon")

            assert manager.check_now() is True
            await settle()
            assert manager.checking is True

            assert manager.check_now() is False
            assert manager.refresh_upgrades() is False
            assert manager.check_now(TriggerSource.TIMER) is False
            await settle()
            spawned_while_held = len(factory.runners)

            factory.spawned("pkcon")[0].release()
            await manager.wait_until_idle()
            await manager.shutdown()
            return factory, spawned_while_held

        factory, spawned_while_held = asyncio.run(scenario())

        assert spawned_while_held == 1
        assert len(factory.spawned("pkcon")) == 1
        assert len(factory.spawned("get-updates.sh")) == 1

    def test_apply_rejected_while_checking(self, config):
        """Test apply-updates does not acquire the slot during a check."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            factory.held.add("pkcon")
            manager.check_now()
            await settle()

            assert manager.apply_updates() is False

            factory.spawned("pkcon")[0].release()
            await manager.wait_until_idle()
            await manager.shutdown()
            return factory

        factory = asyncio.run(scenario())

        assert factory.spawned("gnome-software") == []

    def test_check_rejected_while_applying(self, config):
        """Test checking does not start while updates are applied."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            factory.held.add("gnome-software")

            assert manager.apply_updates() is True
            await settle()
            assert manager.applying is True
            assert manager.check_now() is False
            assert manager.apply_updates() is False

            factory.spawned("gnome-software")[0].release()
            await manager.wait_until_idle()
            await manager.shutdown()
            return factory

        factory = asyncio.run(scenario())

        assert len(factory.spawned("gnome-software")) == 1
        assert factory.spawned("pkcon") == []

    def test_category_dropped_while_running(self, config):
        """Test re-enabling a category while its listing runs spawns nothing."""
        async def scenario():
            manager, factory, presenter = make_manager(config)
            factory.held.add("new.sh")
            manager.start(initial_delay=3600)

            config.set("new_packages", True)
            await settle()
            assert manager.is_running(Category.NEW)

            config.set("new_packages", False)
            config.set("new_packages", True)
            await settle()
            count_while_held = len(factory.spawned("new.sh"))

            factory.spawned("new.sh")[0].release()
            await manager.wait_until_idle()
            await manager.shutdown()
            return count_while_held, presenter

        count_while_held, presenter = asyncio.run(scenario())

        assert count_while_held == 1
        # Switching the flag off cleared the list
        assert [] in presenter.updates_for(Category.NEW)


class TestFailures:
    """Test Error and NoInternet handling."""

    def test_no_internet_spawns_nothing(self, config):
        """Test a failed probe short-circuits before the check command."""
        config.apply_overrides({"check_network": True, "new_packages": True})

        async def scenario():
            manager, factory, presenter = make_manager(config, online=False)
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory, presenter

        manager, factory, presenter = asyncio.run(scenario())

        assert manager.status == NO_INTERNET
        assert factory.runners == []
        assert presenter.checking == [True, False]
        assert manager.probe.calls == 1

    def test_probe_skipped_when_disabled(self, config):
        """Test check_network off never probes."""
        async def scenario():
            manager, _, _ = make_manager(config, online=False)
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.probe.calls == 0
        assert manager.status == CheckStatus.updates_pending(2)

    def test_check_command_spawn_failure_is_error(self, config):
        """Test SpawnFailed on the check command publishes Error."""
        config.apply_overrides({"new_packages": True})

        async def scenario():
            manager, factory, _ = make_manager(config)
            factory.failing.add("pkcon")
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        assert manager.status == ERROR
        assert factory.spawned("get-updates.sh") == []
        # Auxiliary listings still run after a failed upgrades check
        assert len(factory.spawned("new.sh")) == 1

    def test_unparsable_custom_command_is_error(self, config):
        """Test a command string that fails shell parsing is never spawned."""
        config.apply_overrides({"use_custom_cmd": True, "check_cmd_custom": "apt-get 'update"})

        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        assert manager.status == ERROR
        assert factory.runners == []

    def test_listing_failure_keeps_previous_results(self, config):
        """Test a failed listing publishes Error without touching the stored list."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            factory.failing.add("get-updates.sh")
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.status == ERROR
        assert len(manager.results(Category.UPGRADES)) == 2

    def test_presenter_errors_do_not_break_the_cycle(self, config):
        """Test a raising presenter is logged and ignored."""
        class BrokenPresenter(RecordingPresenter):
            def on_status_changed(self, status):
                raise RuntimeError("broken")

        async def scenario():
            manager = UpdateManager(config, presenter=BrokenPresenter(), probe=FakeProbe(),
                                    watcher=FakeWatcher(),
                                    runner_factory=FakeRunnerFactory({"get-updates.sh": UPGRADES}))
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.status == CheckStatus.updates_pending(2)


class TestUrgencyAndFanOut:
    """Test urgency classification and auxiliary categories."""

    def test_urgent_subset_published(self, config):
        """Test urgency output selects entries without changing the count."""
        config.apply_overrides({"show_critical_updates": True})
        outputs = {
            "get-updates.sh": list(UPGRADES),
            "urgency.sh": ["firefox-101.0-1 jammy-security"],
        }

        async def scenario():
            manager, factory, presenter = make_manager(config, outputs=outputs)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        assert factory.keys() == ["get-updates.sh", "urgency.sh"]
        assert manager.results(Category.URGENT) == [PackageEntry("firefox", "101.0-1")]
        assert manager.status == CheckStatus.updates_pending(2)

    def test_urgency_skipped_when_disabled(self, config):
        """Test urgency script does not run when the flag is off."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        assert factory.spawned("urgency.sh") == []
        assert manager.results(Category.URGENT) == []

    def test_fan_out_after_upgrades(self, config):
        """Test enabled categories run after the upgrades listing, disabled ones never."""
        config.apply_overrides({"new_packages": True, "residual_packages": True})
        outputs = {
            "get-updates.sh": list(UPGRADES),
            "new.sh": ["newpkg"],
            "residual.sh": ["oldpkg"],
        }

        async def scenario():
            manager, factory, presenter = make_manager(config, outputs=outputs)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        assert factory.keys()[0] == "get-updates.sh"
        assert sorted(factory.keys()[1:]) == ["new.sh", "residual.sh"]
        assert manager.results(Category.NEW) == [PackageEntry("newpkg")]
        assert manager.results(Category.RESIDUAL) == [PackageEntry("oldpkg")]
        assert factory.spawned("obsolete.sh") == []

    def test_fan_out_runs_concurrently(self, config):
        """Test auxiliary listings are all started before any completes."""
        config.apply_overrides({"new_packages": True, "obsolete_packages": True})

        async def scenario():
            manager, factory, _ = make_manager(config)
            factory.held.update({"new.sh", "obsolete.sh"})
            manager.refresh_upgrades()
            await settle()
            running = (manager.is_running(Category.NEW), manager.is_running(Category.OBSOLETE))
            for runner in factory.runners:
                runner.release()
            await manager.wait_until_idle()
            await manager.shutdown()
            return running

        assert asyncio.run(scenario()) == (True, True)


class TestWatcher:
    """Test the change watcher is paused around checks."""

    def test_watcher_paused_during_check(self, config):
        """Test watcher stops before spawning and resumes after the whole cycle."""
        config.apply_overrides({"new_packages": True})

        async def scenario():
            manager, factory, _ = make_manager(config)
            factory.held.add("new.sh")
            manager.watcher.start()

            manager.check_now()
            await settle()
            during = manager.watcher.active

            factory.spawned("new.sh")[0].release()
            await manager.wait_until_idle()
            after = manager.watcher.active
            await manager.shutdown()
            return during, after

        during, after = asyncio.run(scenario())

        assert during is False
        assert after is True

    def test_directory_change_lists_upgrades(self, config):
        """Test the watcher callback relists without touching the date."""
        async def scenario():
            manager, factory, presenter = make_manager(config)
            manager._on_directory_changed()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory, presenter

        manager, factory, presenter = asyncio.run(scenario())

        assert factory.keys() == ["get-updates.sh"]
        assert manager.last_check is None
        assert presenter.last_checks == []


class TestCancellation:
    """Test cancel_check."""

    def test_cancel_twice_completes_once(self, config):
        """Test idempotent cancellation with one completion."""
        async def scenario():
            manager, factory, presenter = make_manager(config)
            factory.held.add("pkcon")
            manager.check_now()
            await settle()

            first = manager.cancel_check()
            second = manager.cancel_check()
            await manager.wait_until_idle()
            third = manager.cancel_check()
            await manager.shutdown()
            return manager, factory, presenter, (first, second, third)

        manager, factory, presenter, calls = asyncio.run(scenario())

        assert calls == (True, False, False)
        assert factory.spawned("pkcon")[0].cancel_calls == 1
        assert factory.spawned("get-updates.sh") == []
        assert manager.status == IDLE
        assert presenter.checking == [True, False]
        assert manager.watcher.active is True

    def test_cancel_restores_last_completed_status(self, config):
        """Test a cancelled check republishes the previous result."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.refresh_upgrades()
            await manager.wait_until_idle()

            factory.held.add("pkcon")
            manager.check_now()
            await settle()
            manager.cancel_check()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.status == CheckStatus.updates_pending(2)

    def test_cancel_without_check(self, config):
        """Test cancel is a no-op when nothing runs."""
        async def scenario():
            manager, _, _ = make_manager(config)
            result = manager.cancel_check()
            await manager.shutdown()
            return result

        assert asyncio.run(scenario()) is False


class TestApplyUpdates:
    """Test the apply-updates path."""

    def test_apply_then_relist(self, config):
        """Test the update command runs and forces a listing refresh."""
        async def scenario():
            manager, factory, presenter = make_manager(config)
            assert manager.apply_updates() is True
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory, presenter

        manager, factory, presenter = asyncio.run(scenario())

        assert factory.keys() == ["gnome-software", "get-updates.sh"]
        assert factory.runners[0].argv == ["/usr/bin/gnome-software", "--mode", "updates"]
        assert manager.last_check is None
        assert manager.status == CheckStatus.updates_pending(2)

    def test_apply_with_invalid_custom_command(self, config):
        """Test an unparsable update command is refused."""
        config.apply_overrides({"update_cmd_options": 3, "update_cmd": "apt 'upgrade"})

        async def scenario():
            manager, factory, _ = make_manager(config)
            result = manager.apply_updates()
            await manager.shutdown()
            return result, factory

        result, factory = asyncio.run(scenario())

        assert result is False
        assert factory.runners == []


class TestBookkeeping:
    """Test dates, notifications and persisted state."""

    def test_manual_check_records_date(self, config):
        """Test a completed manual check records last_check only."""
        async def scenario():
            manager, _, presenter = make_manager(config)
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, presenter

        manager, presenter = asyncio.run(scenario())

        assert manager.last_check is not None
        assert manager.last_automatic_check is None
        assert presenter.last_checks == [manager.last_check]

    def test_timer_check_records_automatic_date(self, config):
        """Test a timer-driven check records both dates."""
        async def scenario():
            manager, _, _ = make_manager(config)
            manager.check_now(TriggerSource.TIMER)
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager

        manager = asyncio.run(scenario())

        assert manager.last_automatic_check is not None
        assert manager.last_automatic_check == manager.last_check

    def test_state_saved_after_check(self, config, tmp_path):
        """Test the snapshot is written back after a completed check."""
        store = StateStore(tmp_path / "state.json")

        async def scenario():
            manager, _, _ = make_manager(config, state_store=store)
            manager.check_now()
            await manager.wait_until_idle()
            await manager.shutdown()

        asyncio.run(scenario())

        data = json.loads((tmp_path / "state.json").read_text())
        assert data["status"] == {"kind": "updates_pending", "count": 2}
        assert data["upgrades"] == UPGRADES
        assert data["last_check"] is not None

    def test_notification_on_new_updates(self, config):
        """Test the presenter is notified when the count grows."""
        config.apply_overrides({"notify": True, "verbosity": 2})

        async def scenario():
            manager, _, presenter = make_manager(config)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return presenter

        presenter = asyncio.run(scenario())

        # Second check found the same count: no second notification
        assert presenter.notifications == [("New Updates", ["firefox 101.0-1", "vim 2:8.2-1"])]

    def test_notification_compares_with_persisted_list(self, config, tmp_path):
        """Test verbosity 1 only reports packages missing from the saved list."""
        config.apply_overrides({"notify": True, "verbosity": 1})
        store = StateStore(tmp_path / "state.json")
        store.save(StateSnapshot(status=CheckStatus.updates_pending(1), upgrades=["vim\t2:8.2-1"]))

        async def scenario():
            manager, _, presenter = make_manager(config, state_store=store)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return presenter

        presenter = asyncio.run(scenario())

        assert presenter.notifications == [("New Update", ["firefox 101.0-1"])]

    def test_no_notification_when_disabled(self, config):
        """Test notify off never notifies."""
        async def scenario():
            manager, _, presenter = make_manager(config)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            await manager.shutdown()
            return presenter

        assert asyncio.run(scenario()).notifications == []


class TestScheduling:
    """Test timers and settings events."""

    def test_start_publishes_initializing(self, config):
        """Test start() publishes Initializing and defers the first listing."""
        async def scenario():
            manager, factory, presenter = make_manager(config)
            manager.start(initial_delay=3600)
            await settle()
            pending = manager._timers.is_pending("initial")
            await manager.shutdown()
            return factory, presenter, pending

        factory, presenter, pending = asyncio.run(scenario())

        assert presenter.statuses == [INITIALIZING]
        assert pending is True
        assert factory.runners == []

    def test_initial_listing_runs_after_delay(self, config):
        """Test the initial timer lists upgrades without the check command."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.start(initial_delay=0)
            await asyncio.sleep(0.05)
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        assert factory.keys() == ["get-updates.sh"]
        assert manager.last_check is None

    def test_overdue_interval_waits_initializing_backoff(self, config):
        """Test a missed interval during start-up waits the long backoff."""
        async def scenario():
            manager, _, _ = make_manager(config)
            manager.start(initial_delay=3600)
            remaining = manager._timers.remaining("interval")
            await manager.shutdown()
            return remaining

        remaining = asyncio.run(scenario())

        assert INITIALIZING_BACKOFF - 5 < remaining <= INITIALIZING_BACKOFF

    def test_interval_relative_to_last_automatic_check(self, config, tmp_path):
        """Test the next check is due one interval after the last automatic one."""
        store = StateStore(tmp_path / "state.json")
        store.save(StateSnapshot(last_automatic_check=datetime.now() - timedelta(hours=1)))

        async def scenario():
            manager, _, _ = make_manager(config, state_store=store)
            manager.start(initial_delay=3600)
            remaining = manager._timers.remaining("interval")
            await manager.shutdown()
            return remaining

        remaining = asyncio.run(scenario())

        assert 22.9 * 3600 < remaining < 23.1 * 3600

    def test_overdue_interval_after_start_up_uses_floor(self, config):
        """Test a missed interval after initialization waits the short floor."""
        async def scenario():
            manager, _, _ = make_manager(config)
            manager.refresh_upgrades()
            await manager.wait_until_idle()
            manager._schedule_interval()
            remaining = manager._timers.remaining("interval")
            await manager.shutdown()
            return remaining

        remaining = asyncio.run(scenario())

        assert MINIMUM_BACKOFF - 1 < remaining <= MINIMUM_BACKOFF

    def test_zero_interval_disables_timer(self, config):
        """Test check_interval 0 schedules no automatic check."""
        config.apply_overrides({"check_interval": 0})

        async def scenario():
            manager, _, _ = make_manager(config)
            manager.start(initial_delay=3600)
            pending = manager._timers.is_pending("interval")
            await manager.shutdown()
            return pending

        assert asyncio.run(scenario()) is False

    def test_ignore_list_change_is_debounced(self, config):
        """Test ignore-list edits relist only after the debounce delay."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.start(initial_delay=3600)
            config.set("ignore_list", "vim")
            config.set("ignore_list", "vim;firefox")
            await settle()
            pending = manager._timers.is_pending("ignore_list")
            spawned = len(factory.runners)
            await manager.shutdown()
            return pending, spawned

        pending, spawned = asyncio.run(scenario())

        assert pending is True
        assert spawned == 0

    def test_strip_versions_change_relists(self, config):
        """Test toggling strip_versions relists immediately."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.start(initial_delay=3600)
            config.set("strip_versions", True)
            await manager.wait_until_idle()
            await manager.shutdown()
            return manager, factory

        manager, factory = asyncio.run(scenario())

        assert factory.keys() == ["get-updates.sh"]
        assert manager.results(Category.UPGRADES) == [PackageEntry("firefox"), PackageEntry("vim")]


class TestTeardown:
    """Test destroy() and shutdown()."""

    def test_shutdown_cancels_running_processes(self, config):
        """Test teardown terminates children and stops publishing."""
        async def scenario():
            manager, factory, presenter = make_manager(config)
            factory.held.add("pkcon")
            manager.start(initial_delay=3600)
            manager.check_now()
            await settle()
            published = len(presenter.statuses)

            await manager.shutdown()
            return manager, factory, presenter, published

        manager, factory, presenter, published = asyncio.run(scenario())

        assert factory.spawned("pkcon")[0].cancel_calls == 1
        assert len(presenter.statuses) == published
        assert manager._timers.active_count == 0
        assert manager.probe.cancelled == 1
        assert manager.watcher.active is False

    def test_triggers_refused_after_destroy(self, config):
        """Test nothing starts once destroyed."""
        async def scenario():
            manager, factory, _ = make_manager(config)
            manager.destroy()
            results = (manager.check_now(), manager.refresh_upgrades(), manager.apply_updates())
            await settle()
            return results, factory

        results, factory = asyncio.run(scenario())

        assert results == (False, False, False)
        assert factory.runners == []


class TestRealListing:
    """Test the manager with real listing processes."""

    @pytest.mark.skipif(not os.access("/bin/bash", os.X_OK), reason="needs /bin/bash")
    def test_long_output_line_does_not_block_checks(self, config, tmp_path):
        """Test an oversized line finishes the check and later triggers are accepted."""
        scripts = tmp_path / "scripts"
        scripts.mkdir()
        (scripts / "get-updates.sh").write_text(
            "head -c 70000 /dev/zero | tr '\\0' a; echo; printf 'vim\\t2:8.2-1\\n'\n")
        config.apply_overrides({"scripts_dir": str(scripts)})

        async def scenario():
            manager = UpdateManager(config, presenter=RecordingPresenter(),
                                    probe=FakeProbe(), watcher=FakeWatcher())
            manager.refresh_upgrades()
            await asyncio.wait_for(manager.wait_until_idle(), 10)
            checking = manager.checking
            accepted = manager.refresh_upgrades()
            await asyncio.wait_for(manager.wait_until_idle(), 10)
            await manager.shutdown()
            return manager, checking, accepted

        manager, checking, accepted = asyncio.run(scenario())

        assert checking is False
        assert accepted is True
        assert manager.status == CheckStatus.updates_pending(2)
        assert PackageEntry("vim", "2:8.2-1") in manager.results(Category.UPGRADES)
