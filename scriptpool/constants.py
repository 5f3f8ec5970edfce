"""Shared constants for scriptpool.

Import-safe module with no dependencies; can be imported from anywhere
without risk of circular imports.
"""

SCRIPTPOOL_HOME_ENV = "SCRIPTPOOL_HOME"
DEFAULT_HOME_DIRNAME = ".scriptpool"

DEFAULT_NUM_SLOTS = 4
DEFAULT_MAX_RESULTS = 1024
DEFAULT_SHUTDOWN_TIMEOUT = 30.0

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

# Returned by a legacy read when no result is pending.
NOTHING_YET = "Nothing yet.\n"
