"""
Custom Exceptions for FinTrack Billing

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any, List


class FinTrackError(Exception):
    """Base exception for all FinTrack billing errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(FinTrackError):
    """Raised when a required payload field (natural key) is missing or malformed."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
        errors: Optional[List[Dict[str, Any]]] = None
    ):
        details = {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(message, details, original_error)


class PersistenceError(FinTrackError):
    """Raised when the storage layer itself fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(FinTrackError):
    """Raised when a referenced subscription, order or webhook event does not exist."""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if entity:
            details["entity"] = entity
        if key:
            details["key"] = key
        super().__init__(message, details, original_error)


class ConfigurationError(FinTrackError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
