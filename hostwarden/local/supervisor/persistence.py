import os
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .supervisor import ProcessManager

log = logging.getLogger(__name__)


def get_pid_info(pid_file_path: Path) -> Optional[Dict[str, Any]]:
    """
    Reads the PID file from disk and returns its contents.

    :param pid_file_path: Location of the PID file.
    :return: The PID information if the file exists and is valid, else None.
    """
    if not pid_file_path.exists():
        return None
    try:
        with pid_file_path.open("r") as f:
            pid_info = json.load(f)
        if not isinstance(pid_info, dict) or not isinstance(pid_info.get("supervisor"), int):
            pid_file_path.unlink(missing_ok=True)
            return None
        return pid_info
    except (json.JSONDecodeError, IOError):
        pid_file_path.unlink(missing_ok=True)
        return None

def write_pid_file(manager: "ProcessManager") -> None:
    """
    Atomically writes the supervisor PID and the current worker PIDs to the PID file.

    :param manager: The ProcessManager instance.
    """
    pid_file_path = Path(manager.config["PID_FILE_PATH"])
    pid_info = {
        "supervisor": os.getpid(),
        "workers": [
            {
                "name": worker.definition.name,
                "description": worker.definition.description,
                "pid": worker.process_id,
            }
            for worker in manager.workers
        ],
    }
    temp_pid_path = pid_file_path.with_suffix(".tmp")
    try:
        pid_file_path.parent.mkdir(parents=True, exist_ok=True)
        with temp_pid_path.open("w") as f:
            json.dump(pid_info, f, indent=4)
        temp_pid_path.replace(pid_file_path)
    except (IOError, OSError) as e:
        log.error(f"Failed to write PID file: {e}", exc_info=True)
    finally:
        temp_pid_path.unlink(missing_ok=True)

def request_shutdown(signal_path: Path) -> None:
    """Creates the shutdown signal file observed by a running supervisor."""
    signal_path.parent.mkdir(parents=True, exist_ok=True)
    signal_path.touch()

def check_for_shutdown_signal(signal_path: Path) -> bool:
    """Checks if the shutdown signal file exists."""
    if signal_path.exists():
        log.info("Shutdown signal file detected. Stopping supervisor.")
        return True
    return False

def cleanup_shutdown_files(manager: "ProcessManager") -> None:
    """Removes the PID file and the shutdown signal file."""
    Path(manager.config["PID_FILE_PATH"]).unlink(missing_ok=True)
    Path(manager.config["SHUTDOWN_SIGNAL_PATH"]).unlink(missing_ok=True)
    log.debug("Cleaned up PID and signal files.")
