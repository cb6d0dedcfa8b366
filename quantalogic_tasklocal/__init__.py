# quantalogic_tasklocal/__init__.py
from .exceptions import AccessError, InvariantViolation, NotSet, ScopeAlreadyExited
from .handle import UNSET_HANDLE, SharedHandle
from .cell import ScopedCell
from .scope import Scope
from .snapshot import InheritanceSnapshot
from .registry import ContextRegistry, RegistryEntry, RestoreToken, get_registry
from .future_wrapper import InheritingFuture, PollState, PollWrapper, ScopedFuture, inherit_task_local, wrap
from .local import InheritableLocal, create_task, declare

__all__ = [
    'InheritableLocal',
    'declare',
    'inherit_task_local',
    'wrap',
    'create_task',
    'get_registry',
    'ContextRegistry',
    'RegistryEntry',
    'RestoreToken',
    'InheritanceSnapshot',
    'SharedHandle',
    'UNSET_HANDLE',
    'ScopedCell',
    'Scope',
    'PollWrapper',
    'PollState',
    'ScopedFuture',
    'InheritingFuture',
    'NotSet',
    'AccessError',
    'InvariantViolation',
    'ScopeAlreadyExited',
]
