"""
Custom exceptions for the SKU Mapper.

Provides a hierarchy of exceptions shared by the import pipeline, the
mapping registry and the web application.
"""

from typing import Optional, Dict, Any


class AppException(Exception):
    """Base exception for application errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(AppException):
    """Raised when input validation fails."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class FileValidationError(ValidationError):
    """Raised when uploaded file validation fails."""

    error_code = "FILE_VALIDATION_ERROR"

    def __init__(self, message: str, filename: Optional[str] = None):
        details = {"filename": filename} if filename else {}
        super().__init__(message, details)


class StructuralError(ValidationError):
    """
    Raised when an input is malformed as a whole.

    Examples: JSON that does not parse, a JSON root that is not an array,
    bytes that cannot be decoded, or an unsupported file family. The whole
    invocation is rejected before any row is processed.
    """

    error_code = "STRUCTURAL_ERROR"


class FileReadError(AppException):
    """Raised when the uploaded byte source cannot be read."""

    status_code = 400
    error_code = "FILE_READ_ERROR"

    def __init__(self, message: str, filename: Optional[str] = None):
        details = {"filename": filename} if filename else {}
        super().__init__(message, details)


class ConfigurationError(AppException):
    """Raised when configuration is missing or invalid."""

    status_code = 500
    error_code = "CONFIGURATION_ERROR"


class RowParseError(Exception):
    """Raised by the record parser for a single malformed line."""


class RegistryError(AppException):
    """Base class for mapping registry failures."""

    status_code = 400
    error_code = "REGISTRY_ERROR"

    def __init__(self, message: str, sku: Optional[str] = None):
        details = {"sku": sku} if sku is not None else {}
        super().__init__(message, details)


class DuplicateKeyError(RegistryError):
    """Raised when a SKU is already mapped."""

    status_code = 409
    error_code = "DUPLICATE_KEY"


class MappingNotFoundError(RegistryError):
    """Raised when a SKU has no mapping."""

    status_code = 404
    error_code = "NOT_FOUND"


class InvalidFormatError(RegistryError):
    """Raised when a SKU does not match its marketplace format."""

    status_code = 422
    error_code = "INVALID_FORMAT"
