"""
Error kinds raised by the reconciliation engine.

Every error carries a human-readable ``message``, a ``context`` dict for
structured logging, and the HTTP ``status_code`` the API layer maps it to.
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class for engine errors."""

    status_code = 400

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class NotFoundError(ReconciliationError):
    """A referenced transaction, position, strategy or contract spec is absent."""

    status_code = 404


class InsufficientPositionError(ReconciliationError):
    """A sell or close asked for more quantity than is open.

    ``result`` is populated by the matcher with the partial batch result when
    the error is raised after the remaining items were processed.
    """

    status_code = 409

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.result = None


class AmbiguousMatchError(ReconciliationError):
    """More than one candidate could satisfy a match and FIFO cannot decide."""

    status_code = 409


class UnmatchedReferenceError(ReconciliationError):
    """Cash translation needs a collaborator record (contract spec) that is missing."""

    status_code = 424


class ValidationFailureError(ReconciliationError):
    """Malformed transaction, e.g. conflicting option fields."""

    status_code = 422
