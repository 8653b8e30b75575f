"""
This module initializes the console package, exposing key functionalities for
command execution, toggling verbose logging and printing help information.
"""

from .process import execute_command, run_command
from .handler import toggle_verbose_logging, print_help

__all__ = ["execute_command", "run_command", "toggle_verbose_logging", "print_help"]
