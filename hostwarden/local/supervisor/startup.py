import logging
from pathlib import Path
from typing import TYPE_CHECKING
from hostwarden.local.supervisor import config_utils, persistence, process_utils
from hostwarden.local.supervisor.models import RestartPolicy, WorkerRuntime

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)


def check_if_already_running(manager: "ProcessManager") -> bool:
    """
    Checks if another supervisor is already running based on the PID file.

    :param manager: The ProcessManager instance.
    :return: True if already running, False otherwise.
    """
    pid_info = persistence.get_pid_info(Path(manager.config["PID_FILE_PATH"]))
    if pid_info and process_utils.is_process_alive(pid_info["supervisor"]):
        log.error(f"Supervisor appears to be running (PID {pid_info['supervisor']}). Use 'stop' first.")
        return True
    return False


def setup_initial_environment(manager: "ProcessManager") -> None:
    """
    Prepares runtime directories, clears a stale shutdown signal and loads the
    worker configuration if none was supplied to the manager.

    :param manager: The ProcessManager instance.
    :raises config_utils.ConfigurationError: If the workers file is unusable.
    """
    Path(manager.config["PID_FILE_PATH"]).parent.mkdir(parents=True, exist_ok=True)
    Path(manager.config["SHUTDOWN_SIGNAL_PATH"]).unlink(missing_ok=True)

    if manager.definitions is None:
        definitions, policy = config_utils.load_worker_config(manager.config["WORKERS_CONFIG_PATH"])
        manager.definitions = definitions
        if manager.restart_policy is None:
            manager.restart_policy = policy
    elif manager.restart_policy is None:
        manager.restart_policy = RestartPolicy()


def launch_workers(manager: "ProcessManager") -> None:
    """
    Launches every configured worker in declaration order.

    Workers whose executable cannot be resolved or whose process cannot be
    created are logged and left out of the registry. A stagger interval is
    observed after each successful launch.

    :param manager: The ProcessManager instance.
    """
    stagger = manager.config.get("LAUNCH_STAGGER_INTERVAL", 1)

    for definition in manager.definitions:
        if manager.should_stop():
            log.info("Cancellation requested. Aborting launch phase.")
            return

        try:
            path = config_utils.resolve_executable(definition)
        except config_utils.ConfigurationError as e:
            log.error(str(e))
            continue

        log.info(f"Starting {definition.label}")
        try:
            pid = process_utils.launch_process(path, definition.app_params, definition.name or definition.label)
        except process_utils.LaunchFailure as e:
            log.error(f"Failed to start {definition.label}: {e}")
            continue

        manager.workers.append(WorkerRuntime(
            definition=definition,
            process_id=pid,
            started_at=process_utils.get_start_time(pid),
            executable=path,
        ))
        log.info(f"Started {definition.label} with Process ID: {pid}")

        if manager.pause(stagger):
            log.info("Cancellation requested. Aborting launch phase.")
            return


def initialize_supervision(manager: "ProcessManager") -> None:
    """
    Logs the supervision start and the set of workers being monitored.

    :param manager: The ProcessManager instance.
    """
    log.info(f"Supervisor started. Monitoring {len(manager.workers)} worker processes.")
    for worker in manager.workers:
        log.debug(f"Monitoring {worker.label} (PID {worker.process_id}).")
