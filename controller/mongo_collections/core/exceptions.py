"""Controller exceptions.

Database errors are split into transient and permanent kinds so the
reconciler can turn them into outcomes and the scheduler can pick a
retry policy without looking at driver exceptions.
"""
from typing import Optional


class ControllerError(Exception):
    """Base exception for the controller."""

    transient: bool = False

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class DeclarationError(ControllerError):
    """The declared resource is structurally invalid."""


class DatabaseError(ControllerError):
    """A database call failed."""

    def __init__(
        self,
        operation: str,
        message: str,
        cause: Optional[BaseException] = None,
        code: Optional[int] = None,
    ) -> None:
        super().__init__(f"{operation} failed: {message}", cause)
        self.operation = operation
        self.code = code


class TransientDatabaseError(DatabaseError):
    """Connectivity, timeout or credential problem; retry later."""

    transient = True


class PermanentDatabaseError(DatabaseError):
    """The store rejected the request; needs a declaration change."""
