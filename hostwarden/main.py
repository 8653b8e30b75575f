import sys
import logging
from typing import List

# Minimal console logging until setup_logging() takes over.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import hostwarden.local.console as console
from hostwarden.local import app_globals
from hostwarden.log.setup import setup_logging
from hostwarden.local.console.handler import supervisor_state
from hostwarden.local.script_entry.supervisor import run_supervisor


def _split_command(words: List[str]):
    return words[0].lower(), words[1:]


def run_one_shot(argv: List[str]) -> int:
    """
    Runs a single command given on the command line, e.g. `hostwarden stop`.

    :return: The process exit status.
    """
    command, args = _split_command(argv)
    if "--verbose" in args:
        args.remove("--verbose")
        console.toggle_verbose_logging()

    # 'run' keeps the supervisor in this process; its status is ours.
    if command == "run":
        return run_supervisor(app_globals.VERBOSE_LOGGING)

    # Commands report failure by returning False.
    result = console.run_command(command, args)
    return 1 if result is False else 0


def interactive_console() -> None:
    """Reads commands from stdin until 'exit', Ctrl+C or end of input."""
    print("--- HostWarden Management Console ---")
    print(f"Supervisor is currently {supervisor_state()}. Type 'help' for a list of commands.")

    while True:
        try:
            words = input("> ").split()
        except (KeyboardInterrupt, EOFError):
            print()
            log.info("Exiting console.")
            return
        if not words:
            continue

        command, args = _split_command(words)
        try:
            if console.execute_command(command, args):
                return
        except KeyboardInterrupt:
            log.warning(f"Command '{command}' interrupted.")
        except Exception as e:
            log.error(f"Command '{command}' failed: {e}", exc_info=True)


def main() -> None:
    """The entry point of the `hostwarden` command."""
    setup_logging(logging.INFO)
    if len(sys.argv) > 1:
        sys.exit(run_one_shot(sys.argv[1:]))
    interactive_console()


if __name__ == "__main__":
    main()
