"""
ResultStore - per-request retrieval of script results.

Every accepted dispatch carries a request id; its executor stores exactly one
ExecutionResult under that id. Results are read once (``take``) or peeked
(``get``). The store is bounded: once ``max_results`` entries are held the
oldest is evicted.

``take_latest`` serves readers that do not track request ids: it hands out
the most recently completed unread result.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .slots.executor import ExecutionResult

logger = logging.getLogger(__name__)


class ResultStore:
    """Thread-safe bounded mapping of request id -> ExecutionResult."""

    def __init__(self, max_results: int = 1024):
        self.max_results = max_results
        self._results: "OrderedDict[str, ExecutionResult]" = OrderedDict()
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._evicted = 0

    def put(self, result: "ExecutionResult") -> None:
        with self._cond:
            self._results[result.request_id] = result
            self._results.move_to_end(result.request_id)
            while len(self._results) > self.max_results:
                evicted_id, _ = self._results.popitem(last=False)
                self._evicted += 1
                logger.debug(f"Evicted unread result {evicted_id}")
            self._cond.notify_all()

    def get(self, request_id: str) -> Optional["ExecutionResult"]:
        """Return the result for ``request_id`` without consuming it."""
        with self._lock:
            return self._results.get(request_id)

    def take(self, request_id: str) -> Optional["ExecutionResult"]:
        """Return and remove the result for ``request_id``."""
        with self._lock:
            return self._results.pop(request_id, None)

    def take_latest(self) -> Optional["ExecutionResult"]:
        """Return and remove the most recently completed result."""
        with self._lock:
            if not self._results:
                return None
            _, result = self._results.popitem(last=True)
            return result

    def wait(self, request_id: str, timeout: Optional[float] = None) -> Optional["ExecutionResult"]:
        """
        Block until the result for ``request_id`` is stored.

        The result is not consumed.

        Returns:
            The result, or None if ``timeout`` elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while request_id not in self._results:
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(timeout=remaining)
            return self._results[request_id]

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    @property
    def evicted(self) -> int:
        """Number of results dropped unread because the store was full."""
        return self._evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._results
