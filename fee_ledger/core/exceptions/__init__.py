from fee_ledger.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    StateConflictError,
    DuplicateError,
    ConfigurationError,
    AccountingError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "StateConflictError",
    "DuplicateError",
    "ConfigurationError",
    "AccountingError",
]
