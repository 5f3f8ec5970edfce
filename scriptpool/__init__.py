"""
scriptpool - a bounded pool of isolated script interpreters.

Scripts arrive through one ingestion point (the ``ScriptDevice`` facade or
the HTTP gateway in ``scriptpool.server``), are dispatched without blocking
to a free interpreter slot and run asynchronously. A script that fails
costs only its own slot, which is rebuilt from scratch.
"""

from .config import PoolConfig, ServerConfig, load_config
from .device import ScriptDevice
from .interpreter import ScriptInterpreter
from .results import ResultStore
from .slots import (
    Dispatcher,
    DispatchPool,
    DispatchReceipt,
    DispatchStatus,
    ExecutionResult,
)

__version__ = "0.1.0"

__all__ = [
    "Dispatcher",
    "DispatchPool",
    "DispatchReceipt",
    "DispatchStatus",
    "ExecutionResult",
    "PoolConfig",
    "ResultStore",
    "ScriptDevice",
    "ScriptInterpreter",
    "ServerConfig",
    "load_config",
]
