# quantalogic_tasklocal/future_wrapper.py
"""
Awaitable wrappers that bracket every poll of an inner awaitable.

A poll is one send()/throw() on the inner awaitable's iterator. Schedulers may
run consecutive polls of one task on different threads, so the bracketing
happens on every poll and never spans two of them.
"""

import collections.abc
import enum
import sys
from typing import Any, Awaitable, Optional

from .cell import ScopedCell
from .handle import SharedHandle
from .registry import ContextRegistry, get_registry
from .scope import Scope
from .snapshot import InheritanceSnapshot


class PollState(enum.Enum):
    UNPOLLED = "unpolled"
    POLLING = "polling"
    DONE = "done"


class PollWrapper:
    """Drives an inner awaitable one step at a time.

    Subclasses implement _enter() (returns a token), _exit(token) and _finish().
    _enter/_exit pair up inside every single poll; _finish runs once, when the
    inner awaitable completes, fails or is closed.
    """

    def __init__(self, awaitable: Awaitable[Any]) -> None:
        self._awaitable = awaitable
        self._iterator = None
        self.state: PollState = PollState.UNPOLLED

    def _enter(self) -> Any:
        raise NotImplementedError

    def _exit(self, token: Any) -> None:
        raise NotImplementedError

    def _finish(self) -> None:
        pass

    def __await__(self):
        return self

    def __iter__(self):
        return self

    def __next__(self):
        return self.send(None)

    def _advance(self, step):
        if self.state is PollState.DONE:
            raise RuntimeError(f"cannot reuse already awaited {type(self).__name__}")
        finished = True
        token = self._enter()
        try:
            if self._iterator is None:
                self._iterator = self._awaitable.__await__()
                self.state = PollState.POLLING
            result = step(self._iterator)
            finished = False
            return result
        finally:
            self._exit(token)
            if finished:
                self._done()

    def send(self, value):
        if value is None:
            return self._advance(next)
        return self._advance(lambda it: it.send(value))

    def throw(self, exc_type, exc_val=None, exc_tb=None):
        if exc_val is None:
            if isinstance(exc_type, type):
                exc_val = exc_type()
            else:
                exc_val = exc_type
        elif isinstance(exc_val, type):
            exc_val = exc_val()
        if exc_tb is not None:
            exc_val = exc_val.with_traceback(exc_tb)

        def step(iterator):
            throw = getattr(iterator, 'throw', None)
            if throw is None:
                raise exc_val
            return throw(exc_val)

        return self._advance(step)

    def close(self):
        if self.state is PollState.DONE:
            return
        if self._iterator is None:
            # Never started: close the inner coroutine so it is not reported as never awaited.
            close = getattr(self._awaitable, 'close', None)
            if close is not None:
                close()
            self._done()
            return
        token = self._enter()
        try:
            close = getattr(self._iterator, 'close', None)
            if close is not None:
                close()
        finally:
            self._exit(token)
            self._done()

    def _done(self):
        if self.state is PollState.DONE:
            return
        self.state = PollState.DONE
        self._iterator = None
        self._awaitable = None
        self._finish()

    def __del__(self):
        if getattr(self, 'state', PollState.DONE) is PollState.DONE:
            return
        if sys.is_finalizing():
            self.state = PollState.DONE
            self._finish()
            return
        # Same as close(): the inner awaitable's cleanup runs with our values active.
        self.close()

    def __repr__(self):
        return f"<{type(self).__name__} {self.state.value}>"


class ScopedFuture(PollWrapper):
    """Makes one value active for a cell during every poll of the inner awaitable."""

    def __init__(self, cell: ScopedCell, handle: SharedHandle, awaitable: Awaitable[Any]) -> None:
        super().__init__(awaitable)
        self.cell = cell
        self.handle = handle

    def _enter(self) -> Scope:
        scope = Scope(self.cell, self.handle)
        scope.__enter__()
        return scope

    def _exit(self, scope: Scope) -> None:
        scope.__exit__(None, None, None)

    def _finish(self) -> None:
        self.handle.release()


class InheritingFuture(PollWrapper):
    """Splices a parent's snapshot into the polling thread for every poll of the inner awaitable."""

    def __init__(self, awaitable: Awaitable[Any], snapshot: InheritanceSnapshot, registry: ContextRegistry) -> None:
        super().__init__(awaitable)
        self.snapshot = snapshot
        self.registry = registry

    def _enter(self):
        return self.registry.install(self.snapshot)

    def _exit(self, token) -> None:
        self.registry.restore(token)

    def _finish(self) -> None:
        self.snapshot.release()

    def __repr__(self):
        return f"<InheritingFuture {self.state.value} inherits={self.snapshot.names()}>"


# Register the wrappers as coroutines so asyncio.create_task() and asyncio.run() accept them
collections.abc.Coroutine.register(PollWrapper)


def inherit_task_local(awaitable: Awaitable[Any], registry: Optional[ContextRegistry] = None) -> InheritingFuture:
    """Wrap ``awaitable`` so it inherits the inheritable task locals active right now.

    The values are captured at call time, not when the result is spawned or
    first awaited. Pass the result to the spawn function in place of
    ``awaitable``.
    """
    if registry is None:
        registry = get_registry()
    return InheritingFuture(awaitable, registry.snapshot_current(), registry)


wrap = inherit_task_local
