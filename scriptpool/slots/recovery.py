"""Destroy-and-recreate recovery for a slot whose script failed."""

import logging
from enum import Enum
from typing import Callable

from ..interpreter import ScriptInterpreter
from .slot import InterpreterSlot, SlotState

logger = logging.getLogger(__name__)


class RecoveryOutcome(Enum):
    READY = "ready"          # Fresh instance installed
    DISABLED = "disabled"    # No instance could be built; slot is out of rotation


def recover(
    slot: InterpreterSlot,
    new_instance: Callable[[], ScriptInterpreter],
) -> RecoveryOutcome:
    """
    Replace the slot's instance with a freshly initialized one.

    Called by the executor mid-run, with ``slot.lock`` held. The old
    instance is destroyed unconditionally. On success the slot stays
    EXECUTING until the executor detaches the script; if ``new_instance``
    fails the slot stays disabled until the process restarts.

    Args:
        slot: Slot to recover
        new_instance: Builds an instance with the pool's standard bindings

    Returns:
        RecoveryOutcome.READY or RecoveryOutcome.DISABLED
    """
    slot.destroy_instance()

    try:
        instance = new_instance()
    except Exception as e:
        logger.error(
            f"Slot {slot.slot_id}: could not rebuild instance ({e!r}); "
            "slot disabled until restart"
        )
        return RecoveryOutcome.DISABLED

    slot.instance = instance
    slot.baseline = instance.get_top()
    slot.state = SlotState.EXECUTING
    logger.warning(f"Slot {slot.slot_id}: instance flushed")
    return RecoveryOutcome.READY
