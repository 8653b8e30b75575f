"""Tests for the supervision loop, restart policy and shutdown coordination.

The launcher, liveness probe and kill primitive are mocked at the
process_utils module boundary; pauses are disabled through the settings
fixture or replaced with a mock where their arguments matter.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from unittest.mock import call

import pytest

from hostwarden.local.supervisor import monitoring, persistence, process_utils, startup
from hostwarden.local.supervisor.models import WorkerRuntime
from hostwarden.local.supervisor.process_utils import LaunchFailure, TerminationFailure

PROBE = "hostwarden.local.supervisor.process_utils.is_process_alive"
LAUNCH = "hostwarden.local.supervisor.process_utils.launch_process"
KILL = "hostwarden.local.supervisor.process_utils.kill_process"
START_TIME = "hostwarden.local.supervisor.process_utils.get_start_time"


@pytest.fixture(autouse=True)
def fake_start_times(request, mocker):
    """Gives mocked PIDs a deterministic creation time instead of reading the real process table."""
    if request.node.get_closest_marker("real_processes"):
        return
    mocker.patch(START_TIME, side_effect=lambda pid: float(pid))


def register(manager, pids):
    """Populates the registry as if the launch phase had produced the given PIDs."""
    manager.workers = [WorkerRuntime(definition, pid) for definition, pid in zip(manager.definitions, pids)]
    return manager


# =============================================================================
# Probe pass with automatic restart
# =============================================================================


class TestAutomaticRestart:
    """Tests for liveness loss with restart-automatically enabled."""

    def test_restarts_only_the_dead_worker(self, make_manager, make_definitions, mocker, caplog):
        manager = register(make_manager(make_definitions(3), restart_automatically=True, restart_delay_ms=500), [201, 202, 203])
        mocker.patch(PROBE, side_effect=lambda pid, started_at: pid != 202)
        launch = mocker.patch(LAUNCH, return_value=999)
        pause = mocker.patch.object(manager, "pause", return_value=False)

        with caplog.at_level(logging.INFO):
            assert monitoring.monitor_workers(manager) is False

        assert [w.process_id for w in manager.workers] == [201, 999, 203]
        second = manager.definitions[1]
        launch.assert_called_once_with(second.app_path, second.app_params, "worker2")
        assert call(0.5) in pause.call_args_list

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings == ["Process Worker 2 with ID 202 not found. Restarting..."]
        assert "Restarted Worker 2 with Process ID: 999" in caplog.text
        assert manager.workers[1].restart_count == 1
        assert not manager.stop_event.is_set()

    def test_restart_delay_precedes_relaunch(self, make_manager, make_definitions, mocker):
        manager = register(make_manager(make_definitions(1), restart_automatically=True, restart_delay_ms=500), [201])
        events = []
        mocker.patch(PROBE, return_value=False)
        mocker.patch(LAUNCH, side_effect=lambda *args: events.append("launch") or 999)
        mocker.patch.object(manager, "pause", side_effect=lambda seconds: events.append(("pause", seconds)) or False)

        monitoring.monitor_workers(manager)

        assert events == [("pause", 0.5), "launch"]

    def test_new_pid_recorded_each_restart(self, make_manager, make_definitions, mocker):
        manager = register(make_manager(make_definitions(1), restart_automatically=True), [201])
        mocker.patch(PROBE, return_value=False)
        mocker.patch(LAUNCH, side_effect=[500, 501])

        monitoring.monitor_workers(manager)
        assert manager.workers[0].process_id == 500
        monitoring.monitor_workers(manager)
        assert manager.workers[0].process_id == 501
        assert manager.workers[0].restart_count == 2

    def test_pid_file_tracks_restarted_pid(self, make_manager, make_definitions, config, mocker):
        manager = register(make_manager(make_definitions(2), restart_automatically=True), [201, 202])
        mocker.patch(PROBE, side_effect=lambda pid, started_at: pid != 201)
        mocker.patch(LAUNCH, return_value=777)

        monitoring.monitor_workers(manager)

        pid_info = json.loads(config["PID_FILE_PATH"].read_text())
        assert pid_info["supervisor"] == os.getpid()
        assert [w["pid"] for w in pid_info["workers"]] == [777, 202]

    def test_restart_relaunches_resolved_executable(self, make_manager, make_definitions, mocker):
        manager = make_manager(make_definitions(1), restart_automatically=True)
        definition = manager.definitions[0]
        manager.workers = [WorkerRuntime(definition, 201, started_at=201.0, executable=Path("/srv/bin/worker1"))]
        mocker.patch(PROBE, return_value=False)
        launch = mocker.patch(LAUNCH, return_value=999)

        monitoring.monitor_workers(manager)

        launch.assert_called_once_with(Path("/srv/bin/worker1"), "--id 1", "worker1")
        assert manager.workers[0].started_at == 999.0

    def test_cancellation_during_restart_delay_skips_relaunch(self, make_manager, make_definitions, mocker):
        manager = register(make_manager(make_definitions(1), restart_automatically=True, restart_delay_ms=500), [201])
        mocker.patch(PROBE, return_value=False)
        launch = mocker.patch(LAUNCH)
        mocker.patch.object(manager, "pause", return_value=True)

        assert monitoring.monitor_workers(manager) is False

        launch.assert_not_called()
        assert manager.workers[0].process_id == 201


class TestRestartLaunchFailure:
    """Tests for a relaunch whose own process creation fails."""

    def test_failure_starts_cooldown_and_keeps_pid(self, make_manager, make_definitions, mocker, caplog):
        manager = register(make_manager(make_definitions(1), restart_automatically=True), [201])
        mocker.patch(PROBE, return_value=False)
        launch = mocker.patch(LAUNCH, side_effect=LaunchFailure("no such file"))

        with caplog.at_level(logging.ERROR):
            assert monitoring.monitor_workers(manager) is False

        worker = manager.workers[0]
        assert worker.process_id == 201
        assert worker.failed_restarts == 1
        assert worker.cooldown_until > time.time()
        assert "Failed to restart Worker 1 (attempt #1): no such file" in caplog.text

        # Still in cooldown on the next pass.
        assert monitoring.monitor_workers(manager) is False
        assert launch.call_count == 1

    def test_repeated_failures_become_unrecoverable(self, make_manager, make_definitions, config, mocker, caplog):
        config["RESTART_COOLDOWN_PERIOD"] = 0
        manager = register(make_manager(make_definitions(1), restart_automatically=True), [201])
        mocker.patch(PROBE, return_value=False)
        launch = mocker.patch(LAUNCH, side_effect=LaunchFailure("boom"))

        with caplog.at_level(logging.CRITICAL):
            results = [monitoring.monitor_workers(manager) for _ in range(3)]

        assert results == [False, False, True]
        assert launch.call_count == 3
        assert manager.unrecoverable_failure
        assert manager.stop_event.is_set()
        assert "Unrecoverable failure for Worker 1" in caplog.text

    def test_successful_relaunch_resets_failures(self, make_manager, make_definitions, config, mocker):
        config["RESTART_COOLDOWN_PERIOD"] = 0
        manager = register(make_manager(make_definitions(1), restart_automatically=True), [201])
        mocker.patch(PROBE, return_value=False)
        mocker.patch(LAUNCH, side_effect=[LaunchFailure("busy"), 555])

        monitoring.monitor_workers(manager)
        monitoring.monitor_workers(manager)

        worker = manager.workers[0]
        assert worker.process_id == 555
        assert worker.failed_restarts == 0
        assert worker.cooldown_until == 0.0


# =============================================================================
# Probe pass with automatic restart disabled
# =============================================================================


class TestUnrecoverableFailure:
    """Tests for liveness loss with restart-automatically disabled."""

    def test_first_failure_cancels_and_stops_probing(self, make_manager, make_definitions, mocker, caplog):
        manager = register(make_manager(make_definitions(2)), [301, 302])
        probe = mocker.patch(PROBE, return_value=False)
        launch = mocker.patch(LAUNCH)

        with caplog.at_level(logging.ERROR):
            assert monitoring.monitor_workers(manager) is True

        probe.assert_called_once_with(301, None)
        launch.assert_not_called()
        assert manager.stop_event.is_set()
        assert manager.unrecoverable_failure
        errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "Worker 1" in errors[0] and "301" in errors[0]

    def test_shutdown_after_failure_attempts_every_worker(self, make_manager, make_definitions, mocker, caplog):
        manager = register(make_manager(make_definitions(2)), [301, 302])
        mocker.patch(PROBE, return_value=False)
        monitoring.monitor_workers(manager)
        kill = mocker.patch(KILL, side_effect=[TerminationFailure("Process 301 no longer exists."), None])

        with caplog.at_level(logging.INFO):
            manager.stop_all()

        assert kill.call_args_list == [
            call(301, reap_timeout=5, started_at=None),
            call(302, reap_timeout=5, started_at=None),
        ]
        assert "An error occurred while stopping Worker 1 with Process ID 301" in caplog.text
        assert "Stopped Worker 2 with Process ID: 302" in caplog.text

    def test_cancelled_pass_probes_nothing(self, make_manager, make_definitions, mocker):
        manager = register(make_manager(make_definitions(2)), [301, 302])
        probe = mocker.patch(PROBE)
        manager.stop_event.set()

        assert monitoring.monitor_workers(manager) is False
        probe.assert_not_called()


# =============================================================================
# Supervision loop
# =============================================================================


class TestSupervisionLoop:
    """Tests for ProcessManager.supervision_loop."""

    def test_probes_in_registry_order_until_cancelled(self, make_manager, make_definitions, mocker):
        manager = register(make_manager(make_definitions(2)), [401, 402])
        probed = []

        def probe(pid, started_at):
            probed.append(pid)
            if len(probed) == 4:
                manager.stop_event.set()
            return True

        mocker.patch(PROBE, side_effect=probe)

        manager.supervision_loop()

        assert probed == [401, 402, 401, 402]
        assert not manager.unrecoverable_failure

    def test_shutdown_signal_file_stops_loop(self, make_manager, make_definitions, config, mocker):
        manager = register(make_manager(make_definitions(1)), [401])
        probe = mocker.patch(PROBE)
        config["SHUTDOWN_SIGNAL_PATH"].parent.mkdir(parents=True, exist_ok=True)
        config["SHUTDOWN_SIGNAL_PATH"].touch()

        manager.supervision_loop()

        probe.assert_not_called()
        assert manager.stop_event.is_set()

    def test_shutdown_signal_file_interrupts_pass(self, make_manager, make_definitions, config, mocker):
        manager = register(make_manager(make_definitions(3)), [900, 901, 902])
        probed = []

        def probe(pid, started_at):
            probed.append(pid)
            persistence.request_shutdown(config["SHUTDOWN_SIGNAL_PATH"])
            return True

        mocker.patch(PROBE, side_effect=probe)

        manager.supervision_loop()

        assert probed == [900]
        assert manager.stop_event.is_set()
        assert not manager.unrecoverable_failure

    def test_unrecoverable_failure_ends_loop(self, make_manager, make_definitions, mocker):
        manager = register(make_manager(make_definitions(2)), [401, 402])
        mocker.patch(PROBE, return_value=False)

        manager.supervision_loop()

        assert manager.unrecoverable_failure

    def test_unexpected_error_ends_loop(self, make_manager, make_definitions, mocker, caplog):
        manager = register(make_manager(make_definitions(1)), [401])
        mocker.patch(PROBE, side_effect=RuntimeError("process table unavailable"))

        with caplog.at_level(logging.CRITICAL):
            manager.supervision_loop()

        assert manager.stop_event.is_set()
        assert manager.unrecoverable_failure
        assert "process table unavailable" in caplog.text


# =============================================================================
# Full lifecycle
# =============================================================================


class TestRun:
    """Tests for ProcessManager.run and stop_all."""

    def test_fatal_worker_failure_exits_with_error(self, make_manager, make_definitions, config, mocker):
        manager = make_manager(make_definitions(2))
        mocker.patch(LAUNCH, side_effect=[601, 602])
        mocker.patch(PROBE, return_value=False)
        kill = mocker.patch(KILL)

        assert manager.run() == 1

        assert [c.args[0] for c in kill.call_args_list] == [601, 602]
        assert not config["PID_FILE_PATH"].exists()

    def test_external_stop_exits_cleanly(self, make_manager, make_definitions, mocker):
        manager = make_manager(make_definitions(2))
        mocker.patch(LAUNCH, side_effect=[601, 602])
        kill = mocker.patch(KILL)

        def probe(pid, started_at):
            manager.stop_event.set()
            return True

        mocker.patch(PROBE, side_effect=probe)

        assert manager.run() == 0
        assert kill.call_count == 2

    def test_probe_and_kill_check_recorded_start_time(self, make_manager, make_definitions, mocker):
        manager = make_manager(make_definitions(2))
        mocker.patch(LAUNCH, side_effect=[601, 602])
        kill = mocker.patch(KILL)

        def probe(pid, started_at):
            manager.stop_event.set()
            return True

        probe_mock = mocker.patch(PROBE, side_effect=probe)

        assert manager.run() == 0

        assert [w.started_at for w in manager.workers] == [601.0, 602.0]
        probe_mock.assert_called_once_with(601, 601.0)
        assert kill.call_args_list == [
            call(601, reap_timeout=5, started_at=601.0),
            call(602, reap_timeout=5, started_at=602.0),
        ]

    def test_pid_file_claimed_before_first_launch(self, make_manager, make_definitions, config, mocker):
        manager = make_manager(make_definitions(3))
        kill = mocker.patch(KILL)
        claims = []

        def launch(path, params, name):
            pid_info = persistence.get_pid_info(config["PID_FILE_PATH"])
            claims.append((pid_info["supervisor"], startup.check_if_already_running(make_manager([]))))
            persistence.request_shutdown(config["SHUTDOWN_SIGNAL_PATH"])
            return 601

        launch_mock = mocker.patch(LAUNCH, side_effect=launch)

        assert manager.run() == 0

        assert claims == [(os.getpid(), True)]
        launch_mock.assert_called_once()
        kill.assert_called_once_with(601, reap_timeout=5, started_at=601.0)
        assert not config["PID_FILE_PATH"].exists()

    def test_configuration_error_fails_startup(self, make_manager, mocker, caplog):
        manager = make_manager(None)
        launch = mocker.patch(LAUNCH)

        with caplog.at_level(logging.CRITICAL):
            assert manager.run() == 1

        launch.assert_not_called()
        assert "Workers configuration file not found" in caplog.text

    def test_refuses_to_start_twice(self, make_manager, make_definitions, config, mocker):
        config["PID_FILE_PATH"].parent.mkdir(parents=True, exist_ok=True)
        config["PID_FILE_PATH"].write_text(json.dumps({"supervisor": os.getpid(), "workers": []}))
        launch = mocker.patch(LAUNCH)

        assert make_manager(make_definitions(1)).run() == 1

        launch.assert_not_called()
        assert config["PID_FILE_PATH"].exists()

    def test_stop_all_is_idempotent(self, make_manager, make_definitions, mocker):
        manager = register(make_manager(make_definitions(2)), [701, 702])
        kill = mocker.patch(KILL)

        manager.stop_all()
        manager.stop_all()

        assert kill.call_count == 2
        assert manager.stop_event.is_set()

    def test_pause_caps_overlong_delays(self, make_manager, mocker):
        manager = make_manager([])
        manager.stop_event = mocker.Mock()
        manager.stop_event.wait.return_value = False

        assert manager.pause(threading.TIMEOUT_MAX * 10) is False

        manager.stop_event.wait.assert_called_once_with(threading.TIMEOUT_MAX)


@pytest.mark.real_processes
class TestRealProcesses:
    """End-to-end supervision of a real child process."""

    def test_restarts_killed_worker_and_stops_it(self, make_manager, sleeper, spawned_pids):
        manager = make_manager([sleeper], restart_automatically=True)
        startup.setup_initial_environment(manager)
        startup.launch_workers(manager)
        old_pid = manager.workers[0].process_id
        spawned_pids.append(old_pid)

        process_utils.kill_process(old_pid)
        assert monitoring.monitor_workers(manager) is False

        new_pid = manager.workers[0].process_id
        spawned_pids.append(new_pid)
        assert new_pid != old_pid
        assert process_utils.is_process_alive(new_pid)

        manager.stop_all()
        assert not process_utils.is_process_alive(new_pid)
