"""
Common Exception Classes

This module defines custom exceptions used throughout the application.

Validation errors carry their exact message as ``str(error)``: callers
match on ``missing <field>`` and ``<n> <item> found`` / ``<collection> is empty``.
"""

from typing import Optional, Any


class BaseError(Exception):
    """Base class for all custom exceptions."""

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize the exception.

        Args:
            message: Error message
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception

    def __str__(self) -> str:
        return self.message


class DatabaseError(BaseError):
    """Exception raised for database-related errors."""

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize the database error.

        Args:
            message: Error message
            original_exception: Original database exception
        """
        super().__init__(f"Database error: {message}", original_exception)


class ValidationError(BaseError):
    """Exception raised when an operation's input record is rejected."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class MissingField(ValidationError):
    """A required field is absent from the input record."""

    def __init__(self, field: str):
        super().__init__(f"missing {field}", field)


class EmptyCollection(ValidationError):
    """A required collection is present but holds zero elements."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field)


class AssessmentError(BaseError):
    """Base exception class for assessment-related errors."""


class InvalidStatusTransition(AssessmentError):
    """Exception raised when a status would move backwards."""

    def __init__(self, entity_type: str, current: Any, target: Any):
        super().__init__(
            f"{entity_type} cannot move from {getattr(current, 'value', current)} "
            f"to {getattr(target, 'value', target)}"
        )
        self.entity_type = entity_type
        self.current = current
        self.target = target


class InvariantViolation(AssessmentError):
    """Exception raised when an operation would break an assessment invariant."""


class NotFoundError(BaseError):
    """Exception raised when a resource is not found."""

    def __init__(self, resource_type: str, resource_id: Any):
        """
        Initialize the not found error.

        Args:
            resource_type: Type of resource that wasn't found
            resource_id: ID of the resource that wasn't found
        """
        super().__init__(f"{resource_type} with ID {resource_id} not found")
        self.resource_type = resource_type
        self.resource_id = resource_id


class NotificationError(BaseError):
    """Exception raised when an invitation cannot be delivered."""

    def __init__(self, message: str, recipient: str, status_code: int = 500,
                 original_exception: Optional[Exception] = None):
        super().__init__(message, original_exception)
        self.recipient = recipient
        self.status_code = status_code


class ConflictError(BaseError):
    """Exception raised when a unique record already exists."""

    def __init__(self, resource_type: str, identifier: Any):
        super().__init__(f"Duplicate {resource_type} with identifier {identifier}")
        self.resource_type = resource_type
        self.identifier = identifier
