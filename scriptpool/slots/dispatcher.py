"""Dispatcher - hand incoming scripts to a free slot."""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import PoolNotStartedError, ScriptCopyError
from ..results import ResultStore
from .executor import ScriptExecutor
from .pool import DispatchPool
from .slot import InterpreterSlot, ScriptBuffer

logger = logging.getLogger(__name__)


class DispatchStatus(Enum):
    ACCEPTED = "accepted"                      # Queued for asynchronous run
    BUSY = "busy"                              # No free slot; retry later
    OUT_OF_MEMORY = "out_of_memory"            # Script buffer could not be allocated
    COPY_FAILURE = "copy_failure"              # Payload could not be copied
    TASK_SPAWN_FAILURE = "task_spawn_failure"  # Executor thread did not start


@dataclass
class DispatchReceipt:
    """What ``Dispatcher.dispatch`` reports back to the caller."""
    status: DispatchStatus
    request_id: Optional[str] = None
    slot_id: Optional[int] = None
    length: int = 0
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.status == DispatchStatus.ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "request_id": self.request_id,
            "slot_id": self.slot_id,
            "length": self.length,
            "detail": self.detail,
        }


class Dispatcher:
    """
    Entry point for script ingestion.

    ``dispatch`` runs on the caller's thread and never waits for a slot:
    slots are tried with a non-blocking acquire in ascending id order and
    the first free one wins. Only the short pool-wide lock can make
    concurrent callers wait for each other.

    Usage:
        pool = DispatchPool(PoolConfig(num_slots=4))
        pool.init()
        dispatcher = Dispatcher(pool)

        receipt = dispatcher.dispatch(b"x = 1\\nx + 1")
        if receipt.accepted:
            result = dispatcher.results.wait(receipt.request_id, timeout=5)
    """

    def __init__(
        self,
        pool: DispatchPool,
        results: Optional[ResultStore] = None,
        executor: Optional[ScriptExecutor] = None,
    ):
        self.pool = pool
        self.results = results if results is not None else ResultStore(pool.config.max_results)
        self.executor = executor or ScriptExecutor(pool, self.results)

    def dispatch(self, payload: Any, length: Optional[int] = None) -> DispatchReceipt:
        """
        Copy ``payload`` and start it on the lowest-numbered free slot.

        ACCEPTED means the script was queued for a run, not that it
        succeeded; the outcome is stored in ``results`` under the
        receipt's request id.

        Args:
            payload: Script as bytes-like object or str
            length: Number of payload bytes to take (default: all)

        Raises:
            PoolNotStartedError: If the pool is not initialized or is shutting down
        """
        with self.pool.lock:
            if not self.pool.accepting:
                raise PoolNotStartedError("DispatchPool not started")

            try:
                buffer = ScriptBuffer.copy_from(payload, length)
            except MemoryError:
                logger.warning("No memory for script buffer")
                return DispatchReceipt(DispatchStatus.OUT_OF_MEMORY, detail="no memory")
            except ScriptCopyError as e:
                logger.warning(f"Script copy failed: {e}")
                return DispatchReceipt(DispatchStatus.COPY_FAILURE, detail=str(e))

            slot = self._acquire_slot()
            if slot is None:
                buffer.release()
                logger.debug(f"All {self.pool.size} slots busy; dispatch refused")
                return DispatchReceipt(DispatchStatus.BUSY, detail="all slots busy")

            request_id = uuid.uuid4().hex
            copied = buffer.copied
            slot.attach(buffer, request_id)
            try:
                self.executor.spawn(slot)
            except RuntimeError as e:
                logger.error(f"Slot {slot.slot_id}: could not start executor: {e}")
                slot.detach()
                slot.lock.release()
                return DispatchReceipt(DispatchStatus.TASK_SPAWN_FAILURE, detail=str(e))

        logger.debug(f"Request {request_id} dispatched to slot {slot.slot_id}")
        return DispatchReceipt(
            DispatchStatus.ACCEPTED,
            request_id=request_id,
            slot_id=slot.slot_id,
            length=copied,
        )

    def _acquire_slot(self) -> Optional[InterpreterSlot]:
        for slot in self.pool.slots:
            if slot.instance is None:
                continue
            if not slot.lock.acquire(blocking=False):
                continue
            # Recovery may have disabled the slot before we got the lock.
            if slot.instance is None:
                slot.lock.release()
                continue
            return slot
        return None
