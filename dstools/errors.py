"""
dstools Errors
==============

Structured error type shared by every directory operation.

Every failure surfaces as a single DirectoryError carrying:
- kind: an ErrorKind from the fixed taxonomy
- operation: the step that failed (e.g. "locate-controller/domain-lookup")
- target: the name or identity that failed to resolve, when there is one
- cause: the original exception from the transport or DNS layer

Nothing is retried or logged-and-continued here; operation_step() only
decides which kind an underlying failure maps to and records the steps an
error passed through on its way out.
"""

from contextlib import contextmanager
from enum import Enum
from typing import Optional

from .directory.service import ObjectNotFoundError


class ErrorKind(Enum):
    """Failure categories reported to callers."""
    NAME_RESOLUTION_FAILED = "NameResolutionFailed"
    UNREACHABLE = "Unreachable"
    NOT_FOUND = "NotFound"
    OBJECT_NOT_FOUND = "ObjectNotFound"
    INVALID_ARGUMENT = "InvalidArgument"
    INVALID_PRINCIPAL = "InvalidPrincipal"
    MISSING_MANDATORY_ATTRIBUTES = "MissingMandatoryAttributes"
    MALFORMED_RESPONSE = "MalformedResponse"
    DIRECTORY_OPERATION_FAILED = "DirectoryOperationFailed"


class DirectoryError(Exception):
    """A failed directory operation.

    Attributes:
        kind: ErrorKind of the failure
        operation: Name of the step that raised
        message: Human-readable description
        target: Name/identity/path being resolved, if any
        cause: Original exception, if any
        trail: Outer steps the error propagated through (innermost first)
    """

    def __init__(
        self,
        kind: ErrorKind,
        operation: str,
        message: str,
        target: Optional[str] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.kind = kind
        self.operation = operation
        self.message = message
        self.target = target
        self.cause = cause
        self.trail: list[str] = []

    def add_context(self, operation: str) -> None:
        """Record an enclosing step the error passed through."""
        if operation and operation != self.operation and operation not in self.trail:
            self.trail.append(operation)

    @property
    def path(self) -> str:
        """Full step path, outermost first."""
        return "/".join(list(reversed(self.trail)) + [self.operation])

    def __str__(self) -> str:
        where = self.path
        if self.target:
            where = f"{where} [{self.target}]"
        return f"{self.kind.value} in {where}: {self.message}"


@contextmanager
def operation_step(
    operation: str,
    target: Optional[str] = None,
    not_found: ErrorKind = ErrorKind.NOT_FOUND
):
    """Run a block as a named step, mapping failures onto DirectoryError.

    Args:
        operation: Step name recorded on the error
        target: Name or identity the step works on
        not_found: Kind to report when the transport says the object is absent
    """
    try:
        yield
    except DirectoryError as e:
        e.add_context(operation)
        raise
    except ObjectNotFoundError as e:
        raise DirectoryError(not_found, operation, str(e), target, cause=e) from e
    except Exception as e:
        raise DirectoryError(
            ErrorKind.DIRECTORY_OPERATION_FAILED, operation, str(e) or type(e).__name__,
            target, cause=e
        ) from e
