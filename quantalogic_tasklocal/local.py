# quantalogic_tasklocal/local.py
"""
Declaration surface for inheritable task locals.

    REQUEST_ID = InheritableLocal('request_id')

    async def handler():
        task = create_task(worker())          # worker sees REQUEST_ID
        return await task

    await REQUEST_ID.scope('req-42', handler())

Values are shared with child tasks by reference. They do not need to be
copyable and are never copied.
"""

import asyncio
import itertools
import logging
import threading
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .cell import ScopedCell
from .exceptions import AccessError, NotSet
from .future_wrapper import InheritingFuture, ScopedFuture, inherit_task_local
from .handle import SharedHandle
from .registry import ContextRegistry, RegistryEntry, get_registry
from .scope import Scope

logger = logging.getLogger(__name__)

R = TypeVar('R')

_MISSING = object()
_key_counter = itertools.count()
_key_lock = threading.Lock()


def _next_key() -> int:
    with _key_lock:
        return next(_key_counter)


class InheritableLocal:
    """A task-local variable that child tasks can inherit.

    Construct it once, normally as a module-level constant. Construction
    registers it with the registry, and only declarations registered before
    the registry is first queried are inherited.
    """

    def __init__(self, name: str, registry: Optional[ContextRegistry] = None) -> None:
        self.name: str = name
        self.key: int = _next_key()
        self.registry: ContextRegistry = registry if registry is not None else get_registry()
        self._cell = ScopedCell(name)
        self.registry.register(RegistryEntry(
            key=self.key,
            name=name,
            is_active=self._cell.is_active,
            capture=self._capture,
            push=self._cell.push,
            pop=self._cell.pop,
        ))

    def _capture(self) -> SharedHandle:
        return self._cell.top().acquire()

    def scope(self, value: Any, awaitable: Awaitable[R]) -> ScopedFuture:
        """Run ``awaitable`` with ``value`` set. Returns an awaitable with the same result."""
        return ScopedFuture(self._cell, SharedHandle(value), awaitable)

    def sync_scope(self, value: Any, func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Call ``func`` with ``value`` set and return its result."""
        handle = SharedHandle(value)
        try:
            with Scope(self._cell, handle):
                return func(*args, **kwargs)
        finally:
            handle.release()

    def with_value(self, func: Callable[[Any], R]) -> R:
        handle = self._cell.top()
        if handle is None:
            raise self._not_set()
        return func(handle.value)

    def get(self, default: Any = _MISSING) -> Any:
        handle = self._cell.top()
        if handle is None:
            if default is _MISSING:
                raise self._not_set()
            return default
        return handle.value

    def is_set(self) -> bool:
        return self._cell.is_active()

    def _not_set(self) -> NotSet:
        reason = AccessError.NOT_IN_TABLE if self.registry.any_active() else AccessError.NO_CONTEXT
        return NotSet(self.name, reason)

    def __repr__(self):
        return f"<InheritableLocal {self.name!r} key={self.key}>"


def declare(name: str, registry: Optional[ContextRegistry] = None) -> InheritableLocal:
    return InheritableLocal(name, registry=registry)


def create_task(awaitable: Awaitable[R], *, name: Optional[str] = None,
                registry: Optional[ContextRegistry] = None) -> 'asyncio.Task[R]':
    """Schedule ``awaitable`` on the running loop as a task that inherits the current values."""
    wrapped: InheritingFuture = inherit_task_local(awaitable, registry=registry)
    logger.debug("Spawning task %s inheriting %s", name, wrapped.snapshot.names())
    return asyncio.get_running_loop().create_task(wrapped, name=name)
