"""
Slot abstraction for scriptpool.

An InterpreterSlot pairs one ScriptInterpreter with the lock that grants
exclusive use of it, plus the bookkeeping of the script currently attached.
A ScriptBuffer is the owned copy of a caller's script payload.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import ScriptCopyError
from ..interpreter import ScriptInterpreter


class SlotState(Enum):
    """State of a slot in the pool."""
    AVAILABLE = "available"      # Ready for dispatch
    EXECUTING = "executing"      # Script attached, executor running
    DISABLED = "disabled"        # Instance lost; excluded from dispatch


@dataclass
class ScriptBuffer:
    """
    Owned copy of a caller-supplied script payload.

    Attributes:
        data: Raw bytes as copied from the caller
        text: Decoded script source
        copied: Number of payload bytes taken from the caller
    """
    data: bytes
    text: str
    copied: int = 0
    released: bool = False

    @classmethod
    def copy_from(cls, payload: Any, length: Optional[int] = None) -> "ScriptBuffer":
        """
        Copy ``length`` bytes of ``payload`` into a new buffer.

        A single trailing NUL byte is dropped.

        Raises:
            ScriptCopyError: If the payload is not bytes-like, ``length`` is
                out of range or the bytes are not valid UTF-8
            MemoryError: If the copy cannot be allocated
        """
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        try:
            view = memoryview(payload).cast("B")
        except TypeError as e:
            raise ScriptCopyError(f"payload is not bytes-like: {e}") from e

        with view:
            if length is None:
                length = view.nbytes
            if length < 0 or length > view.nbytes:
                raise ScriptCopyError(
                    f"length {length} out of range for {view.nbytes}-byte payload"
                )
            data = view[:length].tobytes()

        if data.endswith(b"\0"):
            data = data[:-1]
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ScriptCopyError(f"script is not valid UTF-8: {e}") from e
        return cls(data=data, text=text, copied=length)

    def release(self) -> None:
        self.data = b""
        self.text = ""
        self.released = True

    def __len__(self) -> int:
        return len(self.data)


@dataclass
class InterpreterSlot:
    """
    One pooled execution instance plus its exclusion lock.

    The lock is only ever taken with ``acquire(blocking=False)`` on the
    dispatch path; whoever holds it owns ``instance``, ``buffer``,
    ``baseline`` and ``state``.

    Attributes:
        slot_id: Index of the slot in the pool (0..N-1)
        instance: Interpreter owned by this slot, None once disabled
        baseline: Stack depth recorded just before the current run
        buffer: Script attached for the current run
        request_id: Request id of the attached script
        task: Executor thread running the attached script
        retiring: Set by pool teardown; the releasing executor destroys the instance
    """
    slot_id: int
    instance: Optional[ScriptInterpreter] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    baseline: int = 0
    buffer: Optional[ScriptBuffer] = None
    request_id: Optional[str] = None
    task: Optional[threading.Thread] = field(default=None, repr=False)
    state: SlotState = SlotState.AVAILABLE
    runs: int = 0
    failures: int = 0
    retiring: bool = False

    @property
    def is_disabled(self) -> bool:
        return self.instance is None

    @property
    def is_busy(self) -> bool:
        return self.lock.locked()

    def attach(self, buffer: ScriptBuffer, request_id: str) -> None:
        """Attach a script for the next run. Caller must hold ``lock``."""
        self.baseline = self.instance.get_top()
        self.buffer = buffer
        self.request_id = request_id
        self.state = SlotState.EXECUTING

    def detach(self) -> None:
        """Release the attached buffer. Caller must hold ``lock``."""
        if self.buffer is not None:
            self.buffer.release()
        self.buffer = None
        self.request_id = None
        self.task = None
        if self.instance is not None:
            self.state = SlotState.AVAILABLE
        else:
            self.state = SlotState.DISABLED

    def destroy_instance(self) -> None:
        """Close and drop the instance. No-op for a disabled slot."""
        if self.instance is not None:
            self.instance.close()
            self.instance = None
        self.state = SlotState.DISABLED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "slot_id": self.slot_id,
            "state": self.state.value,
            "busy": self.is_busy,
            "request_id": self.request_id,
            "runs": self.runs,
            "failures": self.failures,
        }

    def __repr__(self) -> str:
        return f"InterpreterSlot({self.slot_id}, state={self.state.value})"
