"""Custom exception hierarchy for the installment engine."""

from typing import Any


class InstallmentEngineError(Exception):
    """Base exception for all installment engine errors.

    Parameters
    ----------
    message : str
        Human-readable description of the failure.
    field : str | None
        Name of the input field or attribute that failed, when there is one.
    details : dict | None
        Structured context (offending values, expected states, diffs).
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Structured form for API responses and logs."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "field": self.field,
            "details": self.details,
        }


class InvalidParameterError(InstallmentEngineError):
    """Raised when a numeric, date or text input is rejected."""


class EntityNotFoundError(InstallmentEngineError):
    """Raised when a referenced plan, modification or installment does not exist."""


class StateConflictError(InstallmentEngineError):
    """Raised when an entity is in an invalid state for the operation."""


class ConsistencyViolationError(InstallmentEngineError):
    """Raised when an applied modification no longer matches its preview."""


class ConfigurationError(InstallmentEngineError):
    """Raised when configuration is invalid or missing."""


class SinkError(InstallmentEngineError):
    """Raised when a sink operation fails."""
