"""
HostWarden: keeps a fleet of configured worker programs running on one host.
"""

__version__ = "0.1.0"
