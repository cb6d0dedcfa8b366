# quantalogic_tasklocal/registry.py
"""
Process-wide registry of inheritable task local declarations.

Each declaration registers a RegistryEntry when it is constructed, which for
module-level declarations means at import time. The registry only ever sees
entries through their is_active/capture/push/pop callables, so it does not care
about the value type behind each one.

Limitation: once snapshot_current() has run, the registry is sealed (unless
configured otherwise). Declarations constructed later, e.g. in a module
imported lazily at runtime, keep working for their own scopes but are never
inherited by child tasks.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .exceptions import InvariantViolation, ScopeAlreadyExited
from .handle import UNSET_HANDLE, SharedHandle
from .snapshot import InheritanceSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    key: int
    name: str
    is_active: Callable[[], bool]
    capture: Callable[[], SharedHandle]
    push: Callable[[SharedHandle], None]
    pop: Callable[[SharedHandle], None]


class RestoreToken:
    """Records what one install() pushed so restore() can undo exactly that."""

    __slots__ = ('pushed', 'thread_id', 'restored')

    def __init__(self, pushed: List[Tuple[RegistryEntry, SharedHandle]], thread_id: int) -> None:
        self.pushed = pushed
        self.thread_id = thread_id
        self.restored = False


class ContextRegistry:
    def __init__(self, seal_on_first_query: bool = True) -> None:
        self.seal_on_first_query: bool = seal_on_first_query
        self._entries: Tuple[RegistryEntry, ...] = ()
        self._late_entries: Tuple[RegistryEntry, ...] = ()
        self._sealed = False
        self._lock = threading.Lock()

    @property
    def entries(self) -> Tuple[RegistryEntry, ...]:
        return self._entries

    @property
    def late_entries(self) -> Tuple[RegistryEntry, ...]:
        return self._late_entries

    @property
    def sealed(self) -> bool:
        return self._sealed

    def register(self, entry: RegistryEntry) -> None:
        with self._lock:
            if self._sealed:
                self._late_entries = self._late_entries + (entry,)
                late = True
            else:
                self._entries = self._entries + (entry,)
                late = False
        if late:
            logger.warning(
                "Inheritable task local '%s' was declared after the registry was first queried; "
                "child tasks will not inherit it", entry.name
            )
        else:
            logger.debug("Registered inheritable task local '%s' (key=%d)", entry.name, entry.key)

    def any_active(self) -> bool:
        return any(entry.is_active() for entry in self._entries + self._late_entries)

    def snapshot_current(self) -> InheritanceSnapshot:
        """Capture a handle for every registered declaration active on this thread."""
        if self.seal_on_first_query and not self._sealed:
            with self._lock:
                self._sealed = True
        pairs = tuple((entry, entry.capture()) for entry in self._entries if entry.is_active())
        snapshot = InheritanceSnapshot(pairs)
        if pairs:
            logger.debug("Captured snapshot of %s", snapshot.names())
        return snapshot

    def install(self, snapshot: InheritanceSnapshot) -> RestoreToken:
        """Make the snapshot the whole set of active values on this thread.

        Declarations the snapshot does not hold get UNSET_HANDLE, so values
        active on this thread underneath (e.g. when the wrapper is awaited
        inline inside another scope) stay hidden.
        """
        pushed: List[Tuple[RegistryEntry, SharedHandle]] = []
        try:
            for entry in self._entries + self._late_entries:
                handle = snapshot.get(entry.key, UNSET_HANDLE)
                entry.push(handle)
                pushed.append((entry, handle))
        except BaseException:
            for entry, handle in reversed(pushed):
                entry.pop(handle)
            raise
        return RestoreToken(pushed, threading.get_ident())

    def restore(self, token: RestoreToken) -> None:
        if token.restored:
            raise ScopeAlreadyExited("restore token used twice")
        if token.thread_id != threading.get_ident():
            raise InvariantViolation("restore ran on a different thread than its install")
        token.restored = True
        for entry, handle in reversed(token.pushed):
            entry.pop(handle)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self):
        return f"<ContextRegistry entries={len(self._entries)} late={len(self._late_entries)} sealed={self._sealed}>"


_default_registry: Optional[ContextRegistry] = None
_default_lock = threading.Lock()


def get_registry() -> ContextRegistry:
    global _default_registry
    registry = _default_registry
    if registry is None:
        with _default_lock:
            if _default_registry is None:
                _default_registry = ContextRegistry()
            registry = _default_registry
    return registry
