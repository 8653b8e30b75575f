import logging
from typing import TYPE_CHECKING
from hostwarden.local.supervisor import process_utils

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)


def stop_workers(manager: "ProcessManager") -> int:
    """
    Forcefully kills every worker in the registry, in registry order.

    A worker that cannot be killed (for example because it already exited)
    is logged and does not prevent the remaining workers from being stopped.

    :param manager: The ProcessManager instance.
    :return: The number of workers that were killed.
    """
    reap_timeout = manager.config.get("PROCESS_REAP_TIMEOUT", 5)
    stopped = 0
    for worker in manager.workers:
        try:
            process_utils.kill_process(worker.process_id, reap_timeout=reap_timeout, started_at=worker.started_at)
        except process_utils.TerminationFailure as e:
            log.error(f"An error occurred while stopping {worker.label} with Process ID {worker.process_id}: {e}")
            continue
        stopped += 1
        log.info(f"Stopped {worker.label} with Process ID: {worker.process_id}")
    return stopped
