import logging
from typing import Any, List
from hostwarden.local import app_globals
from hostwarden.local.script_entry.supervisor import run_supervisor
from hostwarden.local.supervisor.config_utils import check_configuration
from hostwarden.local.console.handler import (
    display_status, handle_logs_command, print_help, start_background_supervisor,
    stop_supervisor, toggle_verbose_logging
)

log = logging.getLogger(__name__)


def run_command(command: str, args: List[str]) -> Any:
    """
    Runs a single console command and returns its handler's result.

    :param command: The main command string (e.g., 'start', 'stop').
    :param args: A list of arguments for the command.
    :return: The handler's result. False means the command failed or is unknown.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "run": lambda: run_supervisor(app_globals.VERBOSE_LOGGING),
        "start": start_background_supervisor,
        "stop": stop_supervisor,
        "status": display_status,
        "check-config": lambda: check_configuration(args[0] if args else None),
        "logs": handle_logs_command,
        "verbose": toggle_verbose_logging,
        "help": print_help,
        "exit": lambda: True
    }

    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False

    return command_map[command]()


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the interactive console.

    :return bool: True if the console should exit, False otherwise.
    """
    result = run_command(command, args)
    return command == "exit" and result is True
