# animehub/errors.py
from typing import List, Optional


class ValidationError(Exception):
    """Raised when input or business validation fails."""

    def __init__(self, message: str, violations: Optional[List] = None):
        super().__init__(message)
        self.violations = violations or []

    @classmethod
    def from_violations(cls, violations: List) -> "ValidationError":
        return cls(", ".join(str(v) for v in violations), violations)


class InvalidInputError(ValidationError):
    """Raised when an upload is rejected before any record is read."""
    pass


class NotFoundError(Exception):
    """Raised when an entity is not found."""
    pass


class DuplicateError(Exception):
    """Raised when a unique key (anime triple or author name) is already taken."""
    pass


class ConflictError(Exception):
    """Raised when the store refuses an operation because other rows depend on it."""
    pass
