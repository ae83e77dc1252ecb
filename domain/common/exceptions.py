"""Business exception root shared by domain, application and infrastructure.

The core layer only maps these to responses; it is not imported from here.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """Base class for every expected, caller-reportable failure."""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        error_type: str = "DomainValidationError",
        code: int = BusinessCode.PARAM_VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=details,
            field=field,
        )


class StorageError(Exception):
    """The ledger store failed (connection, constraint, commit).

    Raised by unit-of-work implementations in place of driver exceptions so
    the application layer never imports a database library.
    """
