"""
Standardized error codes for the Sidekick runtime core.

This module provides a centralized enumeration of the error codes raised by
the voice session manager, so request handlers can map them to responses
consistently.
"""

import time
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """
    Enumeration of all error codes used in the system.

    Error codes are organized by category:
    - Authentication & Authorization (AUTH_*)
    - Session Management (SESSION_*)
    - Internal Errors (INTERNAL_*)
    """

    # Authentication & Authorization Errors
    AUTH_UNAUTHORIZED = 'AUTH_UNAUTHORIZED'

    # Session Management Errors
    SESSION_NOT_FOUND = 'SESSION_NOT_FOUND'
    SESSION_NOT_ACTIVE = 'SESSION_NOT_ACTIVE'
    SESSION_EXPIRED = 'SESSION_EXPIRED'
    SESSION_LOCKED = 'SESSION_LOCKED'
    SESSION_CAPACITY_REACHED = 'SESSION_CAPACITY_REACHED'
    SESSION_CREATION_FAILED = 'SESSION_CREATION_FAILED'

    # Internal Errors
    INTERNAL_SERVER_ERROR = 'INTERNAL_SERVER_ERROR'
    INTERNAL_DATABASE_ERROR = 'INTERNAL_DATABASE_ERROR'


# Error code to HTTP status code mapping
ERROR_CODE_TO_HTTP_STATUS = {
    ErrorCode.AUTH_UNAUTHORIZED: 403,

    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.SESSION_NOT_ACTIVE: 410,
    ErrorCode.SESSION_EXPIRED: 410,
    ErrorCode.SESSION_LOCKED: 409,
    ErrorCode.SESSION_CAPACITY_REACHED: 429,
    ErrorCode.SESSION_CREATION_FAILED: 500,

    ErrorCode.INTERNAL_SERVER_ERROR: 500,
    ErrorCode.INTERNAL_DATABASE_ERROR: 500,
}


# Error code to user-friendly message mapping
ERROR_CODE_TO_MESSAGE = {
    ErrorCode.AUTH_UNAUTHORIZED: 'Unauthorized session access',

    ErrorCode.SESSION_NOT_FOUND: 'Session not found',
    ErrorCode.SESSION_NOT_ACTIVE: 'Session has already finished',
    ErrorCode.SESSION_EXPIRED: 'Session has expired',
    ErrorCode.SESSION_LOCKED: 'Session is already being processed',
    ErrorCode.SESSION_CAPACITY_REACHED: (
        'Maximum concurrent voice sessions reached. '
        'Please wait for current sessions to complete.'
    ),
    ErrorCode.SESSION_CREATION_FAILED: 'Failed to start voice session',

    ErrorCode.INTERNAL_SERVER_ERROR: 'Internal server error',
    ErrorCode.INTERNAL_DATABASE_ERROR: 'Database error',
}


def get_http_status(error_code: ErrorCode) -> int:
    """
    Get HTTP status code for error code.

    Args:
        error_code: Error code enum value

    Returns:
        HTTP status code (default: 500)
    """
    return ERROR_CODE_TO_HTTP_STATUS.get(error_code, 500)


def get_error_message(error_code: ErrorCode) -> str:
    """
    Get user-friendly error message for error code.

    Args:
        error_code: Error code enum value

    Returns:
        User-friendly error message
    """
    return ERROR_CODE_TO_MESSAGE.get(error_code, 'An error occurred')


def format_error_response(
    error_code: ErrorCode,
    details: Optional[str] = None,
    correlation_id: Optional[str] = None
) -> dict:
    """
    Format standardized error response.

    Args:
        error_code: Error code enum value
        details: Optional additional error details
        correlation_id: Optional correlation ID for tracing

    Returns:
        Formatted error response dictionary

    Example:
        >>> format_error_response(
        ...     ErrorCode.SESSION_LOCKED,
        ...     details='Session ID: voice_u1_1699500000000_a1b2c3d4e',
        ... )
        {
            'type': 'error',
            'code': 'SESSION_LOCKED',
            'message': 'Session is already being processed',
            'details': 'Session ID: voice_u1_1699500000000_a1b2c3d4e',
            'timestamp': 1699500000000
        }
    """
    response = {
        'type': 'error',
        'code': error_code.value,
        'message': get_error_message(error_code),
        'timestamp': int(time.time() * 1000)
    }

    if details:
        response['details'] = details

    if correlation_id:
        response['correlationId'] = correlation_id

    return response
