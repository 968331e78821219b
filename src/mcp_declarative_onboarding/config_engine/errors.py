"""Error taxonomy for the reconciliation engine.

Errors are split by pipeline phase so the coordinator can react correctly:
ValidationError and PlanningError abort before any device mutation,
ApplyError triggers rollback, RollbackError is terminal.
"""
from typing import Optional


class OnboardingError(Exception):
    """Base class for all engine exceptions."""


class ValidationError(OnboardingError):
    """Raised when a declaration is malformed or internally inconsistent."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid declaration")


class PlanningError(OnboardingError):
    """Raised when a plan cannot be built, e.g. an unresolved reference."""


class ApplyError(OnboardingError):
    """Raised when a domain handler's remote call fails."""

    def __init__(
        self,
        message: str,
        schema_class: Optional[str] = None,
        name: Optional[str] = None,
        path: Optional[str] = None,
    ):
        self.schema_class = schema_class
        self.name = name
        self.path = path
        # Set by the plan executor before the error leaves the apply phase
        self.mutations = 0
        super().__init__(message)

    def describe(self) -> str:
        """Message including the failing class/name/path."""
        target = self.schema_class or "unknown"
        if self.name:
            target += f" {self.name}"
        where = f" at {self.path}" if self.path else ""
        return f"{target}{where}: {self}"


class RollbackError(OnboardingError):
    """Raised when restoring the pre-apply snapshot fails."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class PersistenceError(OnboardingError):
    """Raised on state store read/write failures. Callers may retry."""


class TaskNotFoundError(OnboardingError, KeyError):
    """Raised for any access to an unknown task identifier."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"taskId does not exist: {task_id}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(OnboardingError):
    """Raised when a task state change is not allowed by the state machine."""
