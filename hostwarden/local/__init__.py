"""
Local package for the HostWarden supervisor.

This package provides application-level global configuration through the
app_globals singleton, the supervisor engine and the management console.
"""

from .global_config import app_globals

__all__ = ["app_globals"]
