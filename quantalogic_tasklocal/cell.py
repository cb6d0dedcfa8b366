# quantalogic_tasklocal/cell.py
import asyncio
import threading
from typing import Any, List, Optional, Tuple

from .exceptions import InvariantViolation
from .handle import UNSET_HANDLE, SharedHandle


def current_owner() -> Optional[Any]:
    """The asyncio task running on this thread, or None outside of any task."""
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ScopedCell:
    """Per-thread stack of active handles for a single declaration.

    Each entry remembers the task that pushed it. A task only sees entries
    pushed by itself or outside of any task, so a child task stepped eagerly
    on its parent's thread does not read the parent's values. The topmost
    visible entry is the active one; UNSET_HANDLE there means nothing is set.
    """

    def __init__(self, name: str) -> None:
        self.name: str = name
        self._local = threading.local()

    def _stack(self) -> List[Tuple[SharedHandle, Any]]:
        stack = getattr(self._local, 'stack', None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    def _visible(self) -> Optional[SharedHandle]:
        stack = getattr(self._local, 'stack', None)
        if not stack:
            return None
        owner = current_owner()
        for handle, pushed_by in reversed(stack):
            if pushed_by is None or pushed_by is owner:
                return handle
        return None

    def is_active(self) -> bool:
        return self.top() is not None

    def top(self) -> Optional[SharedHandle]:
        handle = self._visible()
        if handle is UNSET_HANDLE:
            return None
        return handle

    def depth(self) -> int:
        return len(getattr(self._local, 'stack', ()))

    def push(self, handle: SharedHandle) -> None:
        self._stack().append((handle, current_owner()))

    def pop(self, handle: SharedHandle) -> None:
        stack = self._stack()
        if not stack:
            raise InvariantViolation("pop from an empty scope stack", self.name)
        if stack[-1][0] is not handle:
            raise InvariantViolation("scopes exited out of order", self.name)
        stack.pop()

    def __repr__(self):
        return f"<ScopedCell {self.name!r} depth={self.depth()}>"
