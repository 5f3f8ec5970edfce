"""Character-device style facade over a Dispatcher.

Exposes the four operations of a script device node:

    open()      -> stateless
    write(data) -> bytes accepted, or a DeviceError with an errno
    read(size)  -> rendered result of a finished script
    release()   -> stateless

All handles share the same pool; there is no per-handle session state.
"""

import logging
from typing import Any, Optional

from .constants import NOTHING_YET
from .errors import (
    DeviceBusyError,
    DeviceCopyError,
    DeviceError,
    DeviceOutOfMemoryError,
    DeviceSpawnError,
)
from .slots.dispatcher import Dispatcher, DispatchStatus
from .slots.executor import ExecutionResult

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    DispatchStatus.BUSY: DeviceBusyError,
    DispatchStatus.OUT_OF_MEMORY: DeviceOutOfMemoryError,
    DispatchStatus.COPY_FAILURE: DeviceCopyError,
    DispatchStatus.TASK_SPAWN_FAILURE: DeviceSpawnError,
}


def render_result(result: ExecutionResult) -> str:
    """Text a reader gets for a finished script."""
    if not result.success:
        return f"error: {result.error}\n"
    if result.value is None:
        return ""
    return result.value


class ScriptDevice:
    """
    Device-node style ingestion point.

    Usage:
        device = ScriptDevice(dispatcher)
        device.open()
        device.write(b"1 + 1")
        request_id = device.last_request_id
        ...
        device.read(request_id=request_id)   # b"2"
        device.release()
    """

    def __init__(self, dispatcher: Dispatcher, placeholder: Optional[str] = None):
        self.dispatcher = dispatcher
        if placeholder is None:
            placeholder = dispatcher.pool.config.placeholder or NOTHING_YET
        self.placeholder = placeholder
        self.last_request_id: Optional[str] = None

    @property
    def results(self):
        return self.dispatcher.results

    def open(self) -> None:
        logger.debug("device opened")

    def release(self) -> None:
        logger.debug("device released")

    def write(self, data: Any, length: Optional[int] = None) -> int:
        """
        Submit a script.

        Returns:
            Number of bytes accepted. The script has been queued, not run.

        Raises:
            DeviceError: Subclass matching the refusal (busy, no memory,
                copy failure, executor start failure)
        """
        receipt = self.dispatcher.dispatch(data, length)
        if receipt.accepted:
            self.last_request_id = receipt.request_id
            return receipt.length

        error_cls = _STATUS_ERRORS.get(receipt.status, DeviceError)
        raise error_cls(receipt.detail or receipt.status.value)

    def read(self, size: int = -1, request_id: Optional[str] = None) -> bytes:
        """
        Read a finished script's output once.

        Args:
            size: Maximum number of bytes to return (negative = all)
            request_id: Result to read; the latest unread result if omitted

        Returns:
            Rendered value or error text, or the placeholder when nothing
            is pending
        """
        if request_id is not None:
            result = self.results.take(request_id)
        else:
            result = self.results.take_latest()

        text = self.placeholder if result is None else render_result(result)
        data = text.encode("utf-8")
        if size >= 0:
            data = data[:size]
        return data
