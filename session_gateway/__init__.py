"""Session Gateway - multiplexes long-lived messaging sessions in one process.

This package keeps many protocol sessions alive across network failures with
a bounded reconnect policy, persists per-session chat metadata so sessions
survive restarts, and relays inbound direct messages to an HTTP consumer.
"""

__version__ = "0.1.0"
__author__ = "Session Gateway Contributors"

from session_gateway.config import Settings, get_settings, load_settings_from_file, set_settings

__all__ = [
    "Settings",
    "__version__",
    "get_settings",
    "load_settings_from_file",
    "set_settings",
]
