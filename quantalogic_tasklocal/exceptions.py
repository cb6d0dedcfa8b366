import enum
from typing import Optional


class AccessError(enum.Enum):
    """Why a read of an inheritable task local found no value."""

    # Other inheritable values are active on this thread, just not this one.
    NOT_IN_TABLE = "not_in_table"
    # Nothing inheritable is active on this thread at all.
    NO_CONTEXT = "no_context"


class NotSet(LookupError):
    def __init__(self, name: str, reason: AccessError) -> None:
        super().__init__(name, reason)
        self.name: str = name
        self.reason: AccessError = reason

    def __str__(self):
        if self.reason is AccessError.NO_CONTEXT:
            return f"inheritable task local '{self.name}' is not set (no inheritable values are active)"
        return f"inheritable task local '{self.name}' is not set"


class InvariantViolation(RuntimeError):
    """Raised when push/pop bookkeeping is broken. Never expected in correct use."""

    def __init__(self, message: str, name: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.name = name

    def __str__(self):
        if self.name:
            return f"{self.message} (variable '{self.name}')"
        return self.message


class ScopeAlreadyExited(InvariantViolation):
    pass
