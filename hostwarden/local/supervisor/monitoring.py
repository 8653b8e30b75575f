import logging
from typing import TYPE_CHECKING
from hostwarden.local.supervisor import process_utils
from hostwarden.local.supervisor.models import WorkerRuntime

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)


def _handle_failed_worker(manager: "ProcessManager", worker: WorkerRuntime) -> bool:
    """
    Handles a worker whose process is gone and decides if a shutdown is needed.
    Returns True if the failure is unrecoverable.
    """
    if not manager.restart_policy.restart_automatically:
        log.error(
            f"Process {worker.label} with ID {worker.process_id} stopped and automatic restart is disabled. "
            "Initiating full shutdown."
        )
        manager.cancel(unrecoverable=True)
        return True

    if manager._attempt_restart(worker):
        return False

    max_attempts = manager.config.get("MAX_RESTART_ATTEMPTS", 3)
    if worker.failed_restarts >= max_attempts:
        log.critical(
            f"PANIC: Unrecoverable failure for {worker.label}. "
            "Initiating full shutdown."
        )
        manager.cancel(unrecoverable=True)
        return True
    return False


def monitor_workers(manager: "ProcessManager") -> bool:
    """
    Runs one liveness probe pass over the registry, in registry order.
    Returns True if an unrecoverable failure initiated a shutdown.
    """
    probe_interval = manager.config.get("SUPERVISOR_PROBE_INTERVAL", 1)

    for worker in manager.workers:
        if manager.should_stop():
            return False

        if process_utils.is_process_alive(worker.process_id, worker.started_at):
            manager.pause(probe_interval)
            continue

        if _handle_failed_worker(manager, worker):
            return True

        # The restart did not happen (cooldown or launch failure); keep pacing.
        if worker.failed_restarts:
            manager.pause(probe_interval)
    return False
