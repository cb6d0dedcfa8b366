# quantalogic_tasklocal/snapshot.py
"""
Inheritance snapshot: the inheritable values that were active when a future
was wrapped, each held through a shared handle.
"""

import logging
from collections.abc import Mapping
from typing import Any, Iterator, List, Tuple

from .handle import SharedHandle

logger = logging.getLogger(__name__)


class InheritanceSnapshot(Mapping):
    """Read-only mapping of declaration key -> SharedHandle.

    Only ContextRegistry.snapshot_current() builds these. The snapshot owns one
    reference on each handle until release().
    """

    def __init__(self, pairs: Tuple[Tuple[Any, SharedHandle], ...]) -> None:
        # pairs are (RegistryEntry, handle), in registration order
        self._pairs = pairs
        self._by_key = {entry.key: handle for entry, handle in pairs}
        self.released = False

    def __getitem__(self, key: int) -> SharedHandle:
        return self._by_key[key]

    def __iter__(self) -> Iterator[int]:
        return iter(self._by_key)

    def __len__(self) -> int:
        return len(self._by_key)

    def pairs(self) -> Tuple[Tuple[Any, SharedHandle], ...]:
        return self._pairs

    def names(self) -> List[str]:
        return [entry.name for entry, _ in self._pairs]

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        for _, handle in self._pairs:
            handle.release()
        if self._pairs:
            logger.debug("Released snapshot of %s", self.names())

    def __repr__(self):
        # Values are left out on purpose.
        return f"<InheritanceSnapshot {self.names()}{' released' if self.released else ''}>"
