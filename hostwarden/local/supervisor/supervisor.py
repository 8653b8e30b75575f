import time
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from hostwarden.local import app_globals
from hostwarden.local.supervisor import monitoring, persistence, process_utils, shutdown, startup
from hostwarden.local.supervisor.models import RestartPolicy, WorkerDefinition, WorkerRuntime

log = logging.getLogger(__name__)


class ProcessManager:
    """
    Launches the configured workers, supervises their liveness, restarts them
    according to the restart policy and tears everything down on cancellation.

    The cancellation event is shared with the host: setting it from outside
    (e.g. a signal handler) stops the supervisor, and the supervisor sets it
    itself when a worker fails unrecoverably.
    """

    def __init__(
        self,
        definitions: Optional[List[WorkerDefinition]] = None,
        restart_policy: Optional[RestartPolicy] = None,
        stop_event: Optional[threading.Event] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initializes the ProcessManager state.

        :param definitions: Worker definitions. Loaded from WORKERS_CONFIG_PATH at startup when None.
        :param restart_policy: The global restart policy. Loaded with the definitions when None.
        :param stop_event: The cancellation event shared with the host.
        :param config: Settings dictionary. Defaults to the application settings.
        """
        self.config: Dict[str, Any] = config if config is not None else app_globals.get_all_settings()
        self.definitions = definitions
        self.restart_policy = restart_policy
        self.workers: List[WorkerRuntime] = []
        self.stop_event = stop_event or threading.Event()
        self.unrecoverable_failure = False
        self._stopped = False

    def pause(self, seconds: float) -> bool:
        """
        Sleeps for the given duration unless cancellation is requested first.

        :return: True if cancellation was requested.
        """
        if seconds <= 0:
            return self.stop_event.is_set()
        # Event.wait rejects timeouts above the platform limit.
        return self.stop_event.wait(min(seconds, threading.TIMEOUT_MAX))

    def should_stop(self) -> bool:
        """
        Checks for cancellation, turning a pending shutdown signal file into
        a cancellation first.
        """
        if self.stop_event.is_set():
            return True
        if persistence.check_for_shutdown_signal(Path(self.config["SHUTDOWN_SIGNAL_PATH"])):
            self.cancel()
            return True
        return False

    def cancel(self, unrecoverable: bool = False) -> None:
        """Raises the cancellation signal, recording whether it stems from a worker failure."""
        if unrecoverable:
            self.unrecoverable_failure = True
        self.stop_event.set()

    def _attempt_restart(self, worker: WorkerRuntime) -> bool:
        """
        Relaunches a dead worker after the policy's restart delay.

        A failed relaunch puts the worker in cooldown; the caller decides when
        repeated failures become unrecoverable.

        :param worker: The worker whose process is gone.
        :return: True if the worker was restarted, False otherwise.
        """
        if worker.cooldown_until > time.time():
            log.debug(f"Worker {worker.label} is in cooldown. Skipping restart.")
            return False

        if self.pause(self.restart_policy.restart_delay):
            return False

        old_pid = worker.process_id
        log.warning(f"Process {worker.label} with ID {old_pid} not found. Restarting...")
        try:
            new_pid = process_utils.launch_process(
                worker.executable or worker.definition.app_path,
                worker.definition.app_params,
                worker.definition.name or worker.label,
            )
        except process_utils.LaunchFailure as e:
            cooldown_period = self.config.get("RESTART_COOLDOWN_PERIOD", 30)
            worker.failed_restarts += 1
            worker.cooldown_until = time.time() + cooldown_period
            log.error(
                f"Failed to restart {worker.label} (attempt #{worker.failed_restarts}): {e}. "
                f"Cooldown active for {cooldown_period}s."
            )
            return False

        worker.process_id = new_pid
        worker.started_at = process_utils.get_start_time(new_pid)
        worker.restart_count += 1
        worker.failed_restarts = 0
        worker.cooldown_until = 0.0
        log.info(f"Restarted {worker.label} with Process ID: {new_pid}")
        persistence.write_pid_file(self)  # Update PID file with new PID.
        return True

    def start_all(self) -> bool:
        """
        Runs the launch phase.

        :return: True on successful startup, False on failure.
        """
        if startup.check_if_already_running(self):
            return False

        log.info("=" * 20 + " Supervisor Starting " + "=" * 20)
        self.workers.clear()
        start_time = time.time()

        try:
            startup.setup_initial_environment(self)
            # Claimed up front so concurrent supervisors and stop requests see this one.
            persistence.write_pid_file(self)
            startup.launch_workers(self)
            persistence.write_pid_file(self)

            app_globals.start_time = start_time
            log.info(
                f"Launch phase completed: {len(self.workers)} of {len(self.definitions)} workers started "
                f"in {time.time() - start_time:.2f} seconds."
            )
            return True
        except Exception as e:
            log.critical(f"Startup failed due to an error: {e}", exc_info=True)
            self.stop_all()
            return False

    def supervision_loop(self) -> None:
        """Probes the workers until cancellation or an unrecoverable failure."""
        startup.initialize_supervision(self)
        probe_interval = self.config.get("SUPERVISOR_PROBE_INTERVAL", 1)

        while not self.stop_event.is_set():
            try:
                if self.should_stop():
                    break

                if not self.workers:
                    log.debug("No workers are registered. Waiting for cancellation.")
                    self.pause(probe_interval)
                    continue

                if monitoring.monitor_workers(self):
                    # A critical, unrecoverable error occurred.
                    return

            except KeyboardInterrupt:
                log.info("Supervisor loop interrupted by user.")
                self.cancel()
                break
            except Exception as e:
                log.critical(f"Critical error in supervisor loop: {e}", exc_info=True)
                self.cancel(unrecoverable=True)
                return

    def stop_all(self) -> None:
        """Kills every registered worker and removes the runtime files. Runs once."""
        self.cancel()
        if self._stopped:
            return
        self._stopped = True

        log.info("Supervisor is stopping...")
        if self.workers:
            stopped = shutdown.stop_workers(self)
            log.info(f"Stopped {stopped} of {len(self.workers)} workers.")
        else:
            log.info("No running workers found to stop.")
        persistence.cleanup_shutdown_files(self)

        if app_globals.start_time:
            log.info(f"Supervisor stop sequence completed. Total runtime: {time.strftime('%H:%M:%S', time.gmtime(time.time() - app_globals.start_time))}")
        else:
            log.info("Supervisor stop sequence completed.")

    def run(self) -> int:
        """
        Launches the workers, supervises them until cancellation and shuts down.

        :return: The exit status for the host process.
        """
        if not self.start_all():
            return 1
        self.supervision_loop()
        self.stop_all()
        return 1 if self.unrecoverable_failure else 0
