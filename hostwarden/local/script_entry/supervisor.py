"""
This is a minimal entry point script for the supervisor process.

Its sole responsibility is to wire host stop signals to the supervisor's
cancellation event, instantiate the ProcessManager and run it until it is
cancelled or a worker fails unrecoverably.
"""
import sys
import signal
import logging
import threading
import setproctitle
from typing import Any, Dict
from hostwarden.local import app_globals
from hostwarden.log.setup import setup_logging
from hostwarden.local.supervisor import ProcessManager

log = logging.getLogger(__name__)


def install_signal_handlers(stop_event: threading.Event) -> Dict[int, Any]:
    """
    Sets the cancellation event when the host asks the supervisor to stop.

    :return: The previously installed handlers, keyed by signal number.
    """
    def handle_shutdown_signal(signum, frame):
        log.info(f"Signal {signum} received, stopping supervisor.")
        stop_event.set()

    previous = {}
    for signum in (signal.SIGTERM, signal.SIGINT):
        previous[signum] = signal.signal(signum, handle_shutdown_signal)
    return previous


def run_supervisor(verbose: bool = False) -> int:
    """
    Runs the supervisor in the current process.

    :param verbose: If True, sets console logging to DEBUG level.
    :return: The exit status (0 after a requested stop, 1 after a failure).
    """
    setproctitle.setproctitle(app_globals.SUPERVISOR_PROCESS_TITLE)
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    stop_event = threading.Event()
    previous_handlers = install_signal_handlers(stop_event)
    try:
        manager = ProcessManager(stop_event=stop_event)
        return manager.run()
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


if __name__ == "__main__":
    sys.exit(run_supervisor(app_globals.VERBOSE_LOGGING))
