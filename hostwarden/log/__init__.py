"""
Logging module for the supervisor.
This module provides functionality to set up logging to the console, a SQLite
database and optionally Grafana Loki.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
