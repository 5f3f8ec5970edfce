"""
DispatchPool - the fixed set of interpreter slots and their lifecycle.

The DispatchPool:
- Allocates all N slots at init, rolling everything back on a partial failure
- Builds instances for init and for recovery through one factory
- Holds the pool-wide lock that serializes dispatch calls
- Tears down every instance at shutdown, waiting for in-flight scripts

Usage:
    pool = DispatchPool(PoolConfig(num_slots=4))
    pool.init()
    ...
    pool.teardown()
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import PoolConfig
from ..errors import (
    InstanceAllocationError,
    PoolInitError,
    PoolStateError,
)
from ..interpreter import ScriptInterpreter
from .slot import InterpreterSlot, SlotState

logger = logging.getLogger(__name__)

_DEFAULT = object()


class DispatchPool:
    """
    Fixed-size pool of InterpreterSlots.

    Slots are created once by ``init`` and never resized. The pool is a
    plain context object: dispatchers and servers receive it explicitly.
    """

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        interpreter_factory: Callable[[], ScriptInterpreter] = ScriptInterpreter,
        bindings: Optional[Dict[str, Any]] = None,
    ):
        self.config = config or PoolConfig()
        self._factory = interpreter_factory
        self._bindings: Dict[str, Any] = dict(bindings or {})

        self.slots: Tuple[InterpreterSlot, ...] = ()

        # Serializes dispatch calls; held only briefly
        self.lock = threading.Lock()

        self._started = False
        self._closing = False

    @property
    def size(self) -> int:
        return len(self.slots)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def accepting(self) -> bool:
        """True while dispatches may be made."""
        return self._started and not self._closing

    def new_instance(self) -> ScriptInterpreter:
        """
        Build an instance with the standard capability bindings.

        Used both at init and by recovery so every instance starts identical.

        Raises:
            InstanceAllocationError: If the factory yields no instance
        """
        instance = self._factory()
        if instance is None:
            raise InstanceAllocationError("interpreter factory returned no instance")
        try:
            instance.open_libs(self.config.libs, self._bindings)
        except Exception:
            instance.close()
            raise
        return instance

    def init(self) -> None:
        """
        Allocate all slots.

        Raises:
            PoolStateError: If the pool is already initialized
            PoolInitError: If any slot could not be allocated; no slot survives
        """
        with self.lock:
            if self._started:
                raise PoolStateError("DispatchPool already initialized")

            slots: List[InterpreterSlot] = []
            try:
                for slot_id in range(self.config.num_slots):
                    slots.append(InterpreterSlot(slot_id=slot_id, instance=self.new_instance()))
                    logger.debug(f"Allocated slot {slot_id}")
            except Exception as e:
                logger.error(
                    f"Allocation of slot {len(slots)} failed ({e!r}); "
                    f"rolling back {len(slots)} slot(s)"
                )
                for slot in slots:
                    slot.destroy_instance()
                raise PoolInitError(
                    f"could not allocate slot {len(slots)} of {self.config.num_slots}"
                ) from e

            self.slots = tuple(slots)
            self._started = True
            self._closing = False

        logger.info(f"DispatchPool started: {self.size} slots")

    def teardown(self, timeout: Any = _DEFAULT) -> int:
        """
        Destroy every slot's instance.

        New dispatches are refused first. Each slot is then taken under its
        own lock, so no instance is destroyed while a script runs on it.
        Slots still executing when ``timeout`` runs out are marked retiring
        and destroyed by their executor when the script finishes.

        Args:
            timeout: Seconds to wait for in-flight scripts; None waits
                forever. Defaults to ``config.shutdown_timeout``.

        Returns:
            Number of slots still executing at the deadline
        """
        if timeout is _DEFAULT:
            timeout = self.config.shutdown_timeout

        with self.lock:
            if not self._started or self._closing:
                return 0
            self._closing = True

        logger.info("Stopping DispatchPool")
        deadline = None if timeout is None else time.monotonic() + timeout
        stranded = 0

        for slot in self.slots:
            slot.retiring = True
            if deadline is None:
                acquired = slot.lock.acquire()
            else:
                acquired = slot.lock.acquire(timeout=max(deadline - time.monotonic(), 0))

            if not acquired:
                stranded += 1
                logger.warning(
                    f"Slot {slot.slot_id} still executing request {slot.request_id} "
                    "at shutdown deadline; its instance is destroyed when it finishes"
                )
                continue
            try:
                slot.destroy_instance()
            finally:
                slot.lock.release()

        with self.lock:
            self._started = False
            self._closing = False

        logger.info(f"DispatchPool stopped ({stranded} slot(s) still draining)")
        return stranded

    def stats(self) -> Dict[str, int]:
        """Slot counts by state."""
        counts = {state.value: 0 for state in SlotState}
        for slot in self.slots:
            counts[slot.state.value] += 1
        counts["total"] = self.size
        return counts

    def describe(self) -> List[Dict[str, Any]]:
        return [slot.to_dict() for slot in self.slots]

    def __enter__(self) -> "DispatchPool":
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()

    def __repr__(self) -> str:
        return f"DispatchPool(size={self.size}, started={self._started})"
