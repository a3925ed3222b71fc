"""Error taxonomy shared by repositories, services and the HTTP layer."""
from typing import Any, Optional


class LibraryError(Exception):
    """Base application exception."""

    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(LibraryError):
    """A book, copy, member or rental does not exist."""

    status_code = 404

    def __init__(self, resource: str, resource_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{resource} with id {resource_id} not found",
            error_code="NOT_FOUND",
            details={"resource": resource, "id": resource_id},
        )


class UnavailableError(LibraryError):
    """No copy is free to rent."""

    status_code = 409

    def __init__(self, message: str, isbn: Optional[str] = None, copy_id: Optional[int] = None):
        details: dict[str, Any] = {}
        if isbn is not None:
            details["isbn"] = isbn
        if copy_id is not None:
            details["copy_id"] = copy_id
        super().__init__(message, error_code="UNAVAILABLE", details=details)


class RentalLimitExceededError(LibraryError):
    """The member already holds the maximum number of open rentals."""

    status_code = 422

    def __init__(self, member_id: int, limit: int):
        super().__init__(
            f"Member {member_id} already has {limit} open rentals",
            error_code="RENTAL_LIMIT_EXCEEDED",
            details={"member_id": member_id, "limit": limit},
        )


class ConflictError(LibraryError):
    """Duplicate unique key or an invalid state transition."""

    status_code = 409

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message,
            error_code="CONFLICT",
            details={"field": field} if field else {},
        )


class ValidationError(LibraryError):
    """Malformed input, rejected before anything is written."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[list] = None):
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(message, error_code="VALIDATION_ERROR", details=details)


class StorageError(LibraryError):
    """The database rejected or failed an operation."""

    status_code = 500

    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message, error_code="STORAGE_ERROR")
