from fastapi import HTTPException
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from .utils import get_correlation_id, format_error_response


class APIException(HTTPException):
    """Custom API exception with enhanced error details"""

    def __init__(
        self,
        status_code: int,
        message: str = "An unexpected API error occurred",
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **kwargs
    ):
        self.message = message
        self.detail = detail or message
        self.error_code = error_code or f"ERR_{status_code}"
        self.correlation_id = correlation_id or get_correlation_id()
        self.timestamp = datetime.now(timezone.utc).isoformat()

        super().__init__(status_code=status_code, detail=self.detail, **kwargs)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error the way an API layer would return it"""
        return format_error_response(
            message=self.message,
            status_code=self.status_code,
            error_code=self.error_code,
            correlation_id=self.correlation_id,
            timestamp=self.timestamp,
        )


class ValidationException(APIException):
    """Exception for malformed input to constructors and mutators"""

    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, Any]] = None):
        self.errors = errors or {}
        super().__init__(
            status_code=422,
            message=message,
            error_code="VALIDATION_ERROR"
        )


class NotFoundException(APIException):
    """Exception for resource not found errors"""

    def __init__(self, message: str = "Resource not found", resource: Optional[str] = None):
        self.resource = resource
        super().__init__(
            status_code=404,
            message=message,
            error_code="NOT_FOUND"
        )


class ConflictException(APIException):
    """Exception for conflict errors"""

    def __init__(self, message: str = "Resource conflict", error_code: str = "CONFLICT_ERROR"):
        super().__init__(
            status_code=409,
            message=message,
            error_code=error_code
        )


class InvalidOperationException(ConflictException):
    """Exception for operations not allowed in the entity's current state"""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        required_states: Optional[Iterable[str]] = None
    ):
        self.current_state = current_state
        self.required_states = list(required_states or [])
        super().__init__(message=message, error_code="INVALID_OPERATION")


class BudgetExceededException(ConflictException):
    """Raised at commit when a campaign budget no longer covers the quoted discount"""

    def __init__(self, message: str = "Campaign budget exceeded", campaign_id: Optional[str] = None):
        self.campaign_id = campaign_id
        super().__init__(message=message, error_code="BUDGET_EXCEEDED")


class DatabaseException(APIException):
    """Exception for database errors. Recoverable: callers may retry the surrounding operation."""

    def __init__(self, message: str = "Database error occurred", metadata: Optional[Dict[str, Any]] = None):
        self.metadata = metadata or {}
        super().__init__(
            status_code=500,
            message=message,
            error_code="DATABASE_ERROR"
        )
