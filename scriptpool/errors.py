"""Exception types for scriptpool.

Dispatch-time faults (busy pool, allocation and copy failures) are reported
as ``DispatchStatus`` values, not exceptions. The exceptions below cover the
instance, pool lifecycle, configuration and the device facade.
"""

import errno
from typing import Optional


class ScriptPoolError(Exception):
    """Base class for all scriptpool errors."""
    pass


class ScriptEvaluationError(ScriptPoolError):
    """Raised by an instance when a script fails to compile or run."""

    def __init__(self, diagnostic: str, chunk_name: str = "script"):
        super().__init__(f"[{chunk_name}] {diagnostic}")
        self.diagnostic = diagnostic
        self.chunk_name = chunk_name


class InstanceClosedError(ScriptPoolError):
    """Raised when a destroyed instance is used."""
    pass


class InstanceAllocationError(ScriptPoolError):
    """Raised by an instance factory that cannot build a new instance."""
    pass


class PoolInitError(ScriptPoolError):
    """Raised when the pool cannot allocate all of its slots."""
    pass


class PoolStateError(ScriptPoolError):
    """Raised on an invalid lifecycle transition (e.g. double init)."""
    pass


class PoolNotStartedError(PoolStateError):
    """Raised when dispatching to a pool that is not initialized or is closing."""
    pass


class ScriptCopyError(ScriptPoolError):
    """Raised when a caller payload cannot be copied into a script buffer."""
    pass


class ConfigError(ScriptPoolError):
    """Raised when configuration is invalid."""
    pass


class DeviceError(ScriptPoolError):
    """Base class for errors surfaced by ``ScriptDevice.write``.

    ``errno`` mirrors the error code a character device would return.
    """

    errno: int = errno.ECANCELED

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message)
        self.request_id = request_id


class DeviceBusyError(DeviceError):
    """No free slot; retry later."""
    errno = errno.EBUSY


class DeviceOutOfMemoryError(DeviceError):
    errno = errno.ENOMEM


class DeviceCopyError(DeviceError):
    errno = errno.EFAULT


class DeviceSpawnError(DeviceError):
    errno = errno.EAGAIN
