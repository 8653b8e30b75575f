"""Shared pytest fixtures for the HostWarden test suite.

This module provides:
- An isolated settings dictionary with runtime files under tmp_path
- Worker definitions pointing at real files
- A ProcessManager factory
- A long-running child process command and cleanup of spawned processes
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import psutil
import pytest

from hostwarden.local import app_globals
from hostwarden.local.supervisor import ProcessManager
from hostwarden.local.supervisor.models import RestartPolicy, WorkerDefinition

SLEEPER_PARAMS = '-c "import time; time.sleep(60)"'


@pytest.fixture
def config(tmp_path: Path) -> Dict[str, Any]:
    """Application settings with every runtime file redirected to tmp_path
    and all supervision pauses disabled."""
    settings = dict(app_globals.get_all_settings())
    settings.update({
        "BASE_DIR": tmp_path,
        "BIN_DIR": tmp_path / "bin",
        "LOGS_DIR": tmp_path / "logs",
        "WORKERS_CONFIG_PATH": tmp_path / "workers.json",
        "PID_FILE_PATH": tmp_path / "bin" / "hostwarden.pid",
        "SHUTDOWN_SIGNAL_PATH": tmp_path / "bin" / "shutdown.signal",
        "OVERRIDES_JSON_PATH": tmp_path / "bin" / "overrides.json",
        "LOG_DB_PATH": tmp_path / "logs" / "hostwarden_logs.db",
        "LAUNCH_STAGGER_INTERVAL": 0,
        "SUPERVISOR_PROBE_INTERVAL": 0,
        "MAX_RESTART_ATTEMPTS": 3,
        "RESTART_COOLDOWN_PERIOD": 30,
        "PROCESS_REAP_TIMEOUT": 5,
        "LOG_DB_ENABLED": False,
        "LOKI_ENABLED": False,
    })
    return settings


@pytest.fixture
def executable(tmp_path: Path) -> Callable[[str], str]:
    """Factory creating an existing file to be used as a worker's app-path."""
    def _make(name: str) -> str:
        path = tmp_path / "apps" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n")
        return str(path)
    return _make


@pytest.fixture
def make_definitions(executable) -> Callable[..., List[WorkerDefinition]]:
    """Factory for N worker definitions named worker1..workerN."""
    def _make(count: int) -> List[WorkerDefinition]:
        return [
            WorkerDefinition(
                name=f"worker{i}",
                description=f"Worker {i}",
                app_path=executable(f"worker{i}"),
                app_params=f"--id {i}",
            )
            for i in range(1, count + 1)
        ]
    return _make


@pytest.fixture
def make_manager(config) -> Callable[..., ProcessManager]:
    """Factory for a ProcessManager bound to the isolated settings."""
    def _make(
        definitions: Optional[List[WorkerDefinition]] = None,
        restart_automatically: bool = False,
        restart_delay_ms: int = 0,
    ) -> ProcessManager:
        policy = RestartPolicy(restart_automatically=restart_automatically, restart_delay_ms=restart_delay_ms)
        return ProcessManager(definitions=definitions, restart_policy=policy, config=config)
    return _make


@pytest.fixture
def sleeper() -> WorkerDefinition:
    """A worker definition running the current interpreter for a minute."""
    return WorkerDefinition(
        name="sleeper",
        description="Sleeper worker",
        app_path=sys.executable,
        app_params=SLEEPER_PARAMS,
    )


@pytest.fixture
def spawned_pids():
    """Collects PIDs started by a test and kills any survivors afterwards."""
    pids: List[int] = []
    yield pids
    for pid in pids:
        try:
            proc = psutil.Process(pid)
            proc.kill()
            proc.wait(timeout=5)
        except (psutil.NoSuchProcess, psutil.TimeoutExpired):
            pass
