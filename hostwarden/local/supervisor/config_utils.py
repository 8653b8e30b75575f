import json
import shutil
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from hostwarden.local import app_globals
from .models import RestartPolicy, WorkerDefinition
from .process_utils import get_interpreter

log = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the workers configuration, or a single worker entry, is unusable."""


def _parse_bool(value: Any) -> Optional[bool]:
    """Parses a JSON boolean or a 'true'/'false' string. Returns None if unparsable."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None

def _parse_delay(value: Any) -> Optional[int]:
    """Parses a non-negative integer number of milliseconds. Returns None if unparsable."""
    if isinstance(value, bool):
        return None
    try:
        delay = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return delay if delay >= 0 else None

def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def read_workers_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Reads the raw workers configuration from disk.

    :param path: Path to the JSON workers file.
    :return: The parsed JSON object.
    :raises ConfigurationError: If the file is missing, malformed or not a JSON object.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Workers configuration file not found at '{path}'.")
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise ConfigurationError(f"Failed to load or parse workers file '{path}': {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Workers file '{path}' must contain a JSON object.")
    return raw


def load_restart_policy(raw: Dict[str, Any]) -> RestartPolicy:
    """
    Builds the global restart policy, falling back to defaults on bad values.

    :param raw: The parsed workers configuration.
    :return: The RestartPolicy to apply to every worker.
    """
    restart_value = raw.get("restart-automatically")
    restart_automatically = _parse_bool(restart_value)
    if restart_automatically is None:
        if restart_value is not None:
            log.warning(f"Could not parse 'restart-automatically' value '{restart_value}'. Defaulting to false.")
        restart_automatically = False

    delay_value = raw.get("restart-delay")
    restart_delay = _parse_delay(delay_value)
    if restart_delay is None:
        if delay_value is not None:
            log.warning(f"Could not parse 'restart-delay' value '{delay_value}'. Defaulting to 0 ms.")
        restart_delay = 0

    return RestartPolicy(restart_automatically=restart_automatically, restart_delay_ms=restart_delay)


def load_worker_definitions(raw: Dict[str, Any]) -> List[WorkerDefinition]:
    """
    Extracts the ordered worker definitions from the parsed configuration.

    :param raw: The parsed workers configuration.
    :return: The worker definitions, in declaration order.
    """
    entries = raw.get("workers") or []
    if not isinstance(entries, list):
        raise ConfigurationError("'workers' must be a list of worker entries.")

    definitions = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            log.error(f"Worker entry #{index + 1} is not an object. Skipping this worker.")
            continue
        definitions.append(WorkerDefinition(
            name=_optional_str(entry.get("name")),
            description=_optional_str(entry.get("description")),
            app_path=_optional_str(entry.get("app-path")),
            app_params=_optional_str(entry.get("app-params")) or "",
        ))
    return definitions


def load_worker_config(path: Union[str, Path]) -> Tuple[List[WorkerDefinition], RestartPolicy]:
    """Reads the workers file and returns its definitions and restart policy."""
    raw = read_workers_file(path)
    definitions = load_worker_definitions(raw)
    policy = load_restart_policy(raw)
    log.info(
        f"Loaded {len(definitions)} worker definitions from '{path}' "
        f"(restart automatically: {policy.restart_automatically}, delay: {policy.restart_delay_ms} ms)."
    )
    return definitions, policy


def resolve_executable(definition: WorkerDefinition) -> Path:
    """
    Resolves a worker's executable path.

    :param definition: The worker definition.
    :return: The absolute path of an existing file.
    :raises ConfigurationError: If the path is empty or does not exist.
    """
    if not definition.app_path:
        raise ConfigurationError("File path is null. Skipping this worker.")
    path = Path(definition.app_path)
    if not path.is_file():
        raise ConfigurationError(f"File path '{path}' for {definition.label} does not exist. Skipping this worker.")
    # A bare name would otherwise be looked up on PATH by the OS.
    return path.resolve()


def check_configuration(workers_path: Optional[Union[str, Path]] = None) -> bool:
    """
    Validates that every configured worker points to an existing file and
    that the interpreters needed by script workers can be found.

    :param workers_path: Path to the workers file. Defaults to WORKERS_CONFIG_PATH.
    :return: True if every worker is launchable, otherwise False.
    """
    workers_path = workers_path or app_globals.WORKERS_CONFIG_PATH
    log.info("Performing configuration and path validation...")
    try:
        definitions, _ = load_worker_config(workers_path)
    except ConfigurationError as e:
        log.error(f"CONFIG CHECK FAILED: {e}")
        return False

    all_ok = True
    for definition in definitions:
        try:
            path = resolve_executable(definition)
        except ConfigurationError as e:
            log.error(f"CONFIG CHECK FAILED: {e}")
            all_ok = False
            continue

        interpreter = get_interpreter(path)
        if interpreter and shutil.which(interpreter[0]) is None:
            log.error(f"CONFIG CHECK FAILED: Interpreter '{interpreter[0]}' for {definition.label} not found on PATH.")
            all_ok = False
        else:
            log.info(f"Config Check OK: Found {definition.label} at '{path}'")
    return all_ok
