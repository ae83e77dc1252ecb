"""
Generic business codes shared by every layer.

Payment failures (6xxxx) live in shared.codes.payment_codes; both enums are
mapped to HTTP statuses in core.exceptions.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Codes carried in the response envelope; 0 is the only success code."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # Generic resource not found

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
