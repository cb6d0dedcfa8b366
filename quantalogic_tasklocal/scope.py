# quantalogic_tasklocal/scope.py
from .cell import ScopedCell
from .exceptions import InvariantViolation, ScopeAlreadyExited
from .handle import SharedHandle


class Scope:
    """One push/pop of a handle on a cell. Single use."""

    def __init__(self, cell: ScopedCell, handle: SharedHandle):
        self.cell = cell
        self.handle = handle
        self.entered = False
        self.exited = False

    def __enter__(self):
        if self.entered:
            raise InvariantViolation("scope entered twice", self.cell.name)
        self.cell.push(self.handle)
        self.entered = True
        return self.handle.value

    def __exit__(self, exc_type, exc_value, traceback):
        if self.exited:
            raise ScopeAlreadyExited("scope exited twice", self.cell.name)
        self.cell.pop(self.handle)
        self.exited = True
        return False
