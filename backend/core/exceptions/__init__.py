from .api_exceptions import (
    APIException,
    ValidationException,
    NotFoundException,
    ConflictException,
    InvalidOperationException,
    BudgetExceededException,
    DatabaseException,
)

from .utils import (
    get_correlation_id,
    format_error_response
)

__all__ = [
    # Exceptions
    "APIException",
    "ValidationException",
    "NotFoundException",
    "ConflictException",
    "InvalidOperationException",
    "BudgetExceededException",
    "DatabaseException",

    # Utils
    "get_correlation_id",
    "format_error_response"
]
