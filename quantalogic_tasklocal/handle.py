# quantalogic_tasklocal/handle.py
"""
Reference-counted value holder shared between a scope and every task that
inherits from it.
"""

import threading
from typing import Any

from .exceptions import InvariantViolation

_RELEASED = object()


class SharedHandle:
    """Holds one scope value. Inheriting tasks acquire the handle, never a copy of the value.

    The scope that creates the handle owns the first reference. The value is
    dropped when the last reference is released.
    """

    __slots__ = ('_value', '_count', '_lock')

    def __init__(self, value: Any) -> None:
        self._value = value
        self._count = 1
        self._lock = threading.Lock()

    @property
    def value(self) -> Any:
        value = self._value
        if value is _RELEASED:
            raise InvariantViolation("read of a released shared handle")
        return value

    @property
    def refcount(self) -> int:
        return self._count

    @property
    def released(self) -> bool:
        return self._value is _RELEASED

    def acquire(self) -> 'SharedHandle':
        with self._lock:
            if self._count == 0:
                raise InvariantViolation("acquire on a released shared handle")
            self._count += 1
        return self

    def release(self) -> bool:
        """Drop one reference. Returns True when that was the last one."""
        with self._lock:
            if self._count == 0:
                raise InvariantViolation("shared handle released more times than acquired")
            self._count -= 1
            if self._count:
                return False
            self._value = _RELEASED
        return True

    def __repr__(self):
        state = "released" if self.released else f"refs={self._count}"
        return f"<SharedHandle {state}>"


# Pushed by an install for every registered variable the snapshot does not hold,
# hiding whatever the polling thread had active underneath. Never acquired or released.
UNSET_HANDLE = SharedHandle(None)
