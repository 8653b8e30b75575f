import sys
import time
import psutil
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, Optional
from hostwarden.local import app_globals
from hostwarden.log.database import LogDBManager
from hostwarden.local.supervisor import persistence, process_utils

log = logging.getLogger(__name__)


def _get_pid_info() -> Optional[Dict[str, Any]]:
    return persistence.get_pid_info(Path(app_globals.PID_FILE_PATH))

def _is_supervisor_running() -> bool:
    pid_info = _get_pid_info()
    return bool(pid_info) and process_utils.is_process_alive(pid_info["supervisor"])

def supervisor_state() -> str:
    """Returns 'RUNNING' or 'STOPPED' for the console banner."""
    return "RUNNING" if _is_supervisor_running() else "STOPPED"

def start_background_supervisor() -> bool:
    """
    Spawns the supervisor as a detached background process.

    :return: True if the supervisor process was started.
    """
    if _is_supervisor_running():
        print("Supervisor is already running. Use 'stop' first.")
        return False

    args = [app_globals.PYTHON_EXECUTABLE, "-m", "hostwarden.local.script_entry.supervisor"]
    popen_kwargs = process_utils._get_popen_creation_flags()
    try:
        p = subprocess.Popen(
            args, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
            cwd=str(app_globals.BASE_DIR), **popen_kwargs
        )
    except OSError as e:
        log.error(f"Failed to start the supervisor process: {e}", exc_info=True)
        return False
    log.info(f"Supervisor started in the background with PID: {p.pid}")
    return True

def stop_supervisor() -> bool:
    """
    Asks a running supervisor to stop through the shutdown signal file and
    waits for it to exit.

    :return: True if the supervisor is no longer running.
    """
    pid_info = _get_pid_info()
    if not pid_info or not process_utils.is_process_alive(pid_info["supervisor"]):
        print("Supervisor is not running.")
        Path(app_globals.PID_FILE_PATH).unlink(missing_ok=True)
        return True

    supervisor_pid = pid_info["supervisor"]
    persistence.request_shutdown(Path(app_globals.SHUTDOWN_SIGNAL_PATH))
    log.info(f"Shutdown requested for supervisor (PID {supervisor_pid}). Waiting for it to exit...")

    deadline = time.monotonic() + app_globals.SHUTDOWN_WAIT_TIMEOUT
    while time.monotonic() < deadline:
        if not process_utils.is_process_alive(supervisor_pid):
            log.info("Supervisor stopped.")
            return True
        time.sleep(0.5)

    log.error(f"Supervisor (PID {supervisor_pid}) did not stop within {app_globals.SHUTDOWN_WAIT_TIMEOUT} seconds.")
    return False

def display_status() -> None:
    """Displays the status of the supervisor and its workers, including resource usage."""
    pid_info = _get_pid_info()
    if not pid_info:
        print("\nSupervisor is STOPPED (No PID file found).\n")
        return

    print("\n--- Supervisor Status ---")
    entries = [("supervisor", pid_info["supervisor"])]
    entries += [
        (worker.get("description") or worker.get("name") or "worker", worker.get("pid"))
        for worker in pid_info.get("workers", [])
    ]

    all_stale = True
    total_cpu = 0.0
    total_mem = 0
    for name, pid in entries:
        if not isinstance(pid, int):
            print(f"  - {name:<32} : PID ?        | Status: UNKNOWN")
            continue
        try:
            p = psutil.Process(pid)
            status = p.status()
            if status == psutil.STATUS_ZOMBIE:
                print(f"  - {name:<32} : PID {pid:<8} | Status: STOPPED (Zombie)")
                continue
            cpu = p.cpu_percent(interval=0.1)
            mem = p.memory_info().rss
            print(f"  - {name:<32} : PID {pid:<8} | Status: {status.upper()} | CPU: {cpu:.1f}% | MEM: {mem/1024/1024:.1f} MB")
            total_cpu += cpu
            total_mem += mem
            all_stale = False
        except psutil.NoSuchProcess:
            print(f"  - {name:<32} : PID {pid:<8} | Status: STOPPED (Stale PID)")
        except psutil.AccessDenied:
            print(f"  - {name:<32} : PID {pid:<8} | Status: RUNNING (Access Denied)")
            all_stale = False

    print(f"\nTOTAL CPU: {total_cpu:.1f}%  |  TOTAL MEMORY: {total_mem/1024/1024:.1f} MB")
    if all_stale:
        print("\nWARNING: All processes are stopped but a stale PID file exists.")
        print("You should run 'stop' to clean it up before starting again.")
    print("-" * 25 + "\n")

def handle_logs_command() -> None:
    """Prints the most recent entries of the log database."""
    log_db = LogDBManager(Path(app_globals.LOG_DB_PATH))
    count = app_globals.LOG_HISTORY_COUNT

    print(f"\n--- Displaying last {count} log entries ---")
    try:
        entries = log_db.get_recent_logs(count)
    except Exception as e:
        log.error(f"Failed to fetch log history: {e}")
        return

    for entry in entries:
        if entry.level == "DEBUG" and not app_globals.VERBOSE_LOGGING:
            continue
        timestamp = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(entry.timestamp))
        print(f"{timestamp} - {entry.level:<8} - [{entry.module}] - {entry.message}")
    print()

def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    app_globals.VERBOSE_LOGGING = not app_globals.VERBOSE_LOGGING
    new_level = logging.DEBUG if app_globals.VERBOSE_LOGGING else logging.INFO

    # Reconfigure the console handler's level directly
    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout:
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if app_globals.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
    else:
        print("Could not find console handler to modify level.")

def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  run                    - Run the supervisor in the foreground (Ctrl+C to stop).")
    print("  start                  - Start the supervisor in the background.")
    print("  stop                   - Stop the background supervisor and all its workers.")
    print("  status                 - Show the current status of the supervisor and workers.")
    print("  logs                   - View the most recent log entries.")
    print("  check-config           - Validate the configured worker paths and interpreters.")
    print("  verbose                - Toggle detailed DEBUG log output in the console.")
    print("  exit                   - Exit the management console.")
    print()
