"""
ScriptInterpreter - one isolated Lua state.

Each instance owns its own ``lupa.LuaRuntime``: a separate Lua state with
its own globals, libraries and garbage collector. Nothing a script does
(reassigning ``string.rep``, growing tables, defining globals) is visible
to another instance or to the host process.

``open_libs`` trims the runtime down to the configured standard libraries
and removes everything that reaches outside the state (files, processes,
module loading, the Python bridge). Values returned by a chunk land on an
evaluation stack kept per instance.
"""

import traceback
from typing import Any, Dict, Iterable, List, Optional

from lupa import LuaError, LuaRuntime

from .errors import InstanceClosedError, ScriptEvaluationError

# Libraries every instance gets unless configured otherwise (the standard
# capability bindings). Base functions are always present.
STANDARD_LIBS = (
    "coroutine",
    "math",
    "string",
    "table",
    "utf8",
)

# Libraries that may be listed in ``PoolConfig.libs``.
AVAILABLE_LIBS = frozenset(STANDARD_LIBS) | {"os"}

# Globals removed from every instance.
BLOCKED_GLOBALS = (
    "debug",
    "dofile",
    "io",
    "load",
    "loadfile",
    "package",
    "python",
    "require",
)

# Members of ``os`` kept when it is enabled.
SAFE_OS_FUNCTIONS = ("clock", "date", "difftime", "time")


def _diagnostic(exc: BaseException) -> str:
    if isinstance(exc, LuaError):
        return str(exc)
    return "".join(traceback.format_exception_only(type(exc), exc)).strip()


def _attribute_filter(obj, attr_name, is_setting):
    # Bound Python objects expose public attributes, read-only.
    if is_setting or not isinstance(attr_name, str) or attr_name.startswith("_"):
        raise AttributeError(f"access to '{attr_name}' is not allowed")
    return attr_name


class ScriptInterpreter:
    """
    An isolated Lua state with an explicit evaluation stack.

    Usage:
        interp = ScriptInterpreter()
        interp.open_libs()
        interp.run("local x = 20\\nreturn x + 22")
        interp.get_top()      # 1
        interp.to_string()    # "42"
        interp.close()
    """

    def __init__(self):
        self.runtime: Optional[LuaRuntime] = LuaRuntime(
            register_eval=False,
            register_builtins=False,
            attribute_filter=_attribute_filter,
        )
        self.stack: List[Any] = []
        self.libs: tuple = ()
        self._load = None
        self._tostring = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise InstanceClosedError("instance has been closed")

    def globals(self):
        """The instance's Lua global table."""
        self._check_open()
        return self.runtime.globals()

    def open_libs(
        self,
        libs: Iterable[str] = STANDARD_LIBS,
        bindings: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Install the standard capability bindings.

        Args:
            libs: Standard libraries to keep; the rest are removed
            bindings: Extra globals. Python callables can be called from
                Lua; other objects expose their public attributes.

        Raises:
            ValueError: If ``libs`` names an unknown library
        """
        self._check_open()
        libs = tuple(libs)
        unknown = [name for name in libs if name not in AVAILABLE_LIBS]
        if unknown:
            raise ValueError(f"unknown Lua libraries: {', '.join(unknown)}")
        self.libs = libs

        g = self.runtime.globals()
        self._load = g["load"]
        self._tostring = g["tostring"]

        for name in BLOCKED_GLOBALS:
            g[name] = None
        for name in AVAILABLE_LIBS - set(libs):
            g[name] = None
        if "os" in libs:
            os_lib = self.runtime.table()
            for name in SAFE_OS_FUNCTIONS:
                os_lib[name] = g["os"][name]
            g["os"] = os_lib

        for name, value in (bindings or {}).items():
            g[name] = value

    def run(self, source: str, chunk_name: str = "script") -> None:
        """
        Execute ``source`` as one Lua chunk.

        Values returned by the chunk are pushed onto the stack.

        Raises:
            ScriptEvaluationError: If the chunk fails to compile or raises,
                including Python exceptions raised by bound callables
            InstanceClosedError: If the instance has been closed
        """
        self._check_open()
        try:
            loaded = self._load(source, f"={chunk_name}", "t")
            if isinstance(loaded, tuple):
                # load() returned nil plus the compile error
                raise ScriptEvaluationError(str(loaded[-1]), chunk_name)
            returned = loaded()
        except ScriptEvaluationError:
            raise
        except BaseException as e:
            raise ScriptEvaluationError(_diagnostic(e), chunk_name) from e

        if isinstance(returned, tuple):
            self.stack.extend(returned)
        elif returned is not None:
            self.stack.append(returned)

    def get_top(self) -> int:
        """Current stack depth."""
        return len(self.stack)

    def push(self, value: Any) -> None:
        self._check_open()
        self.stack.append(value)

    def set_top(self, depth: int) -> None:
        """Drop every stack value above ``depth``."""
        del self.stack[max(depth, 0):]

    def to_string(self, index: int = -1) -> str:
        """
        Render a stack value with Lua's ``tostring``.

        Raises:
            ScriptEvaluationError: If a ``__tostring`` metamethod fails
        """
        self._check_open()
        value = self.stack[index]
        if isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8", errors="replace")
        try:
            return str(self._tostring(value))
        except BaseException as e:
            raise ScriptEvaluationError(_diagnostic(e), "tostring") from e

    def close(self) -> None:
        """Destroy the instance. Safe to call more than once."""
        self._closed = True
        self.stack.clear()
        self._load = None
        self._tostring = None
        self.runtime = None

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"top={len(self.stack)}"
        return f"ScriptInterpreter({state})"
