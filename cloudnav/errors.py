"""
Error types for cloudnav.

Every error raised by the data layer is a NavError subclass carrying an
ErrorType tag, so callers (CLI, HTTP handlers) can map failures without
string matching.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union


class ErrorType(str, Enum):
    """Kinds of failure surfaced by the data layer."""
    VALIDATION = "validation"
    READ_ONLY = "read_only"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    INCOMPATIBLE_VERSION = "incompatible_version"


@dataclass(frozen=True)
class FieldError:
    """A validation problem attached to a single record field."""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class NavError(Exception):
    """Base exception for cloudnav errors."""

    error_type = ErrorType.VALIDATION

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for API responses and CLI JSON output."""
        return {
            "type": self.error_type.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(NavError):
    """Raised when input is malformed, duplicated or references a missing record."""

    error_type = ErrorType.VALIDATION

    def __init__(self, message: str, errors: Optional[Iterable[Union[FieldError, str]]] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.errors: List[Union[FieldError, str]] = list(errors or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = [str(e) for e in self.errors]
        return data


class ReadOnlyError(NavError):
    """Raised for write operations while serving the bundled dataset."""

    error_type = ErrorType.READ_ONLY


class NotFoundError(NavError):
    """Raised when a category or site id does not exist."""

    error_type = ErrorType.NOT_FOUND

    def __init__(self, entity: str, id: str):
        super().__init__(f'{entity.capitalize()} "{id}" not found', {"entity": entity, "id": id})
        self.entity = entity
        self.id = id


class NetworkError(NavError):
    """Raised when the remote key-value store is unavailable or fails."""

    error_type = ErrorType.NETWORK

    def __init__(self, cause: Union[BaseException, str], operation: str,
                 key: Optional[Union[str, List[str]]] = None):
        reason = str(cause) or cause.__class__.__name__
        target = f" [{key}]" if key else ""
        super().__init__(f"{operation}{target} failed: {reason}",
                         {"operation": operation, "key": key})
        self.operation = operation
        self.key = key
        self.cause = cause if isinstance(cause, BaseException) else None


class IncompatibleVersionError(NavError):
    """Raised when the remote store's data version is not supported."""

    error_type = ErrorType.INCOMPATIBLE_VERSION

    def __init__(self, found: str, supported: Iterable[str]):
        supported = list(supported)
        super().__init__(
            f"Data version {found} is not compatible (supported: {', '.join(supported)})",
            {"found": found, "supported": supported},
        )
        self.found = found
        self.supported = supported
