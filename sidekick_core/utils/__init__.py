"""
Utility functions and services.
"""

from .structured_logger import (
    StructuredLogger,
    LoggingContext,
    get_structured_logger,
    configure_lambda_logging,
)
from .metrics import MetricsPublisher
from .error_codes import (
    ErrorCode,
    format_error_response,
    get_http_status,
    get_error_message,
)

__all__ = [
    'StructuredLogger',
    'LoggingContext',
    'get_structured_logger',
    'configure_lambda_logging',
    'MetricsPublisher',
    'ErrorCode',
    'format_error_response',
    'get_http_status',
    'get_error_message',
]
