"""
The Supervisor package.
Manages the lifecycle of the configured worker processes.

This package contains the central ProcessManager class and its helper modules,
which together handle launching, liveness probing, restarting and stopping
of every worker.
"""
from .supervisor import ProcessManager

__all__ = ['ProcessManager']
