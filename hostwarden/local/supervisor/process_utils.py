import sys
import shlex
import shutil
import psutil
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from hostwarden.local import app_globals

log = logging.getLogger(__name__)


class LaunchFailure(Exception):
    """Raised when the OS refuses to create a worker process."""


class TerminationFailure(Exception):
    """Raised when a worker process cannot be killed (e.g. it already exited)."""


#* --- Process Status & Monitoring ---
def get_process_from_pid(pid: int) -> psutil.Process:
    """A wrapper for psutil.Process for easy testing/mocking if needed."""
    return psutil.Process(pid)

def get_start_time(pid: int) -> Optional[float]:
    """
    Returns the OS creation time of a process, used to tell it apart from a
    later process that reuses the same PID.

    :return: The creation timestamp, or None if the process is already gone.
    """
    try:
        return get_process_from_pid(pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None

def _is_same_process(proc: psutil.Process, started_at: Optional[float]) -> bool:
    return started_at is None or proc.create_time() == started_at

def is_process_alive(pid: int, started_at: Optional[float] = None) -> bool:
    """
    Probes the OS process table for the given PID.

    Exited children that have not been reaped yet (zombies) count as dead, and
    so does an unrelated process that took over the PID.

    :param pid: The process identifier to look up.
    :param started_at: Creation time recorded at launch, if known.
    :return: True if the PID maps to the live process, otherwise False.
    """
    try:
        proc = get_process_from_pid(pid)
        if not _is_same_process(proc, started_at):
            return False
        return proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # The process exists but belongs to someone else.
        return True

def _reap(proc: psutil.Process, timeout: float) -> None:
    """Waits for a killed process to disappear so it does not linger as a zombie."""
    try:
        proc.wait(timeout=timeout)
    except psutil.TimeoutExpired:
        log.warning(f"Process {proc.pid} did not exit within {timeout}s after being killed.")
    except psutil.NoSuchProcess:
        pass

def kill_process(pid: int, reap_timeout: Optional[float] = None, started_at: Optional[float] = None) -> None:
    """
    Forcefully kills a process, without a graceful termination period.

    :param pid: The process identifier to kill.
    :param reap_timeout: Seconds to wait for the process to exit after the kill.
    :param started_at: Creation time recorded at launch. A process with another
        creation time holds a reused PID and is left alone.
    :raises TerminationFailure: If the process no longer exists or cannot be signalled.
    """
    if reap_timeout is None:
        reap_timeout = app_globals.get("PROCESS_REAP_TIMEOUT", 5)

    try:
        proc = get_process_from_pid(pid)
        if not _is_same_process(proc, started_at):
            raise TerminationFailure(f"Process {pid} has exited and its PID now belongs to another process.")
        if proc.status() == psutil.STATUS_ZOMBIE:
            _reap(proc, 0)
            raise TerminationFailure(f"Process {pid} has already exited.")
        proc.kill()
    except psutil.NoSuchProcess as e:
        raise TerminationFailure(f"Process {pid} no longer exists.") from e
    except psutil.AccessDenied as e:
        raise TerminationFailure(f"Access denied while killing process {pid}.") from e
    _reap(proc, reap_timeout)

#* --- Process Creation ---
def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific keyword arguments for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}

def get_interpreter(path: Union[str, Path], interpreters: Optional[Mapping[str, Sequence[str]]] = None) -> Optional[List[str]]:
    """
    Returns the interpreter command for script-type paths.

    :param path: The worker's executable path.
    :param interpreters: Mapping of lowercase file suffix to interpreter command.
    :return: The interpreter command, or None if the path is a direct executable.
    """
    if interpreters is None:
        interpreters = app_globals.get("SCRIPT_INTERPRETERS", {})
    command = interpreters.get(Path(path).suffix.lower())
    return list(command) if command else None

def build_command(prefix: List[str], app_params: str) -> Union[str, List[str]]:
    """
    Builds the Popen command from a program prefix and the raw argument string.

    On Windows the argument string is appended verbatim to the command line.
    Elsewhere it is split the way a POSIX shell would.

    :raises LaunchFailure: If the argument string cannot be parsed.
    """
    if sys.platform == "win32":
        command_line = subprocess.list2cmdline(prefix)
        return f"{command_line} {app_params}" if app_params else command_line
    try:
        return prefix + shlex.split(app_params or "")
    except ValueError as e:
        raise LaunchFailure(f"Could not parse arguments '{app_params}': {e}") from e

def _log_drained_output(name: str, output: bytes, level: int) -> None:
    """Logs each non-empty line of a drained pipe through the 'proc.<name>' logger."""
    proc_logger = logging.getLogger(f"proc.{name}")
    for line in output.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if line:
            proc_logger.log(level, line)

def _run_script(interpreter: List[str], path: str, app_params: str, name: str) -> int:
    """Runs a script through its interpreter and blocks until it exits."""
    executable = shutil.which(interpreter[0])
    if executable is None:
        raise LaunchFailure(f"Interpreter '{interpreter[0]}' for '{path}' was not found on PATH.")

    command = build_command([executable, *interpreter[1:], path], app_params)
    try:
        p = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.DEVNULL)
    except OSError as e:
        raise LaunchFailure(f"Failed to start interpreter for '{path}': {e}") from e

    stdout, stderr = p.communicate()
    _log_drained_output(name, stdout, logging.INFO)
    _log_drained_output(name, stderr, logging.ERROR)
    log.debug(f"Script '{path}' (PID {p.pid}) exited with code {p.returncode}.")
    return p.pid

def _run_executable(path: str, app_params: str) -> int:
    """Starts a long-running executable and returns without waiting for it."""
    command = build_command([path], app_params)
    try:
        p = subprocess.Popen(command, stdin=subprocess.DEVNULL, **_get_popen_creation_flags())
    except OSError as e:
        raise LaunchFailure(f"Failed to start '{path}': {e}") from e
    return p.pid

def launch_process(path: Union[str, Path], app_params: str = "", name: str = "worker") -> int:
    """
    Launches a worker process and returns its PID.

    Paths with a script suffix are dispatched to their interpreter and awaited
    to completion, with their output drained. Any other path is executed
    directly and left running.

    :param path: Path of the executable or script.
    :param app_params: Raw argument string passed to the program.
    :param name: Logical worker name, used for the output logger.
    :return: The PID of the created process.
    :raises LaunchFailure: If the process could not be created.
    """
    path = str(path)
    interpreter = get_interpreter(path)
    if interpreter:
        return _run_script(interpreter, path, app_params, name)
    return _run_executable(path, app_params)
