"""
ScriptExecutor - runs one accepted script on the slot it was dispatched to.

Each accepted script gets its own short-lived daemon thread. The thread
owns the slot (its lock is already held by the dispatcher) and is
responsible for releasing it. A failing script triggers recovery of that
slot only; nothing is reported back to the dispatching caller except the
result stored under the request id.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..errors import ScriptEvaluationError
from ..results import ResultStore
from .recovery import RecoveryOutcome, recover
from .slot import InterpreterSlot

if TYPE_CHECKING:
    from .pool import DispatchPool

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Outcome of one script run."""
    request_id: str
    slot_id: int
    success: bool = False
    value: Optional[str] = None  # Rendered value left on the stack, if any
    error: str = ""
    recovered: Optional[RecoveryOutcome] = None
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def has_value(self) -> bool:
        return self.value is not None

    @property
    def duration(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "request_id": self.request_id,
            "slot_id": self.slot_id,
            "success": self.success,
            "value": self.value,
            "error": self.error,
            "recovered": self.recovered.value if self.recovered else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration": self.duration,
        }


class ScriptExecutor:
    """
    Spawns and runs executor threads for a DispatchPool.

    Usage:
        executor = ScriptExecutor(pool, results)
        executor.spawn(slot)   # slot.lock held, script attached
    """

    def __init__(self, pool: "DispatchPool", results: Optional[ResultStore] = None):
        self.pool = pool
        self.results = results

    def spawn(self, slot: InterpreterSlot) -> threading.Thread:
        """
        Start the executor thread for the script attached to ``slot``.

        Raises:
            RuntimeError: If the thread cannot be started
        """
        thread = threading.Thread(
            target=self._run,
            args=(slot,),
            name=f"scriptpool-slot-{slot.slot_id}",
            daemon=True,
        )
        slot.task = thread
        thread.start()
        return thread

    def _run(self, slot: InterpreterSlot) -> None:
        """Thread body. Always releases ``slot.lock``."""
        result = ExecutionResult(
            request_id=slot.request_id,
            slot_id=slot.slot_id,
            started_at=time.time(),
        )
        try:
            self._evaluate(slot, result)
        except BaseException as e:
            # The instance may be in any state; it is never reused.
            logger.exception(f"Slot {slot.slot_id}: executor crashed on request {result.request_id}")
            result.success = False
            result.value = None
            result.error = result.error or repr(e)
            if result.recovered is None:
                result.recovered = recover(slot, self.pool.new_instance)
        finally:
            result.finished_at = time.time()
            self._finish(slot, result)

    def _evaluate(self, slot: InterpreterSlot, result: ExecutionResult) -> None:
        instance = slot.instance
        slot.runs += 1
        try:
            instance.run(slot.buffer.text, chunk_name=f"slot{slot.slot_id}:{result.request_id[:8]}")
            if instance.get_top() > slot.baseline:
                result.value = instance.to_string(-1)
        except ScriptEvaluationError as e:
            slot.failures += 1
            logger.warning(f"Slot {slot.slot_id}: request {result.request_id} failed: {e.diagnostic}")
            result.error = e.diagnostic
            result.recovered = recover(slot, self.pool.new_instance)
            return

        result.success = True
        if result.value is not None:
            logger.debug(f"Slot {slot.slot_id}: request {result.request_id} returned {result.value!r}")
        instance.set_top(slot.baseline)

    def _finish(self, slot: InterpreterSlot, result: ExecutionResult) -> None:
        try:
            slot.detach()
            if slot.retiring:
                slot.destroy_instance()
                logger.info(f"Slot {slot.slot_id}: retired after shutdown")
        finally:
            slot.lock.release()

        if self.results is not None:
            self.results.put(result)
