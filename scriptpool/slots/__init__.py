"""
Slot-based script dispatch for scriptpool.

Provides:
- InterpreterSlot: One interpreter instance plus its exclusion lock
- DispatchPool: Fixed set of slots with init/teardown lifecycle
- Dispatcher: Non-blocking hand-off of scripts to free slots
- ScriptExecutor: Per-script executor threads
- recover: Destroy-and-recreate of a faulted slot
"""

from .dispatcher import Dispatcher, DispatchReceipt, DispatchStatus
from .executor import ExecutionResult, ScriptExecutor
from .pool import DispatchPool
from .recovery import RecoveryOutcome, recover
from .slot import InterpreterSlot, ScriptBuffer, SlotState

__all__ = [
    "Dispatcher",
    "DispatchReceipt",
    "DispatchStatus",
    "DispatchPool",
    "ExecutionResult",
    "InterpreterSlot",
    "RecoveryOutcome",
    "ScriptBuffer",
    "ScriptExecutor",
    "SlotState",
    "recover",
]
