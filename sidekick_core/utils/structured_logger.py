"""
Structured JSON logging for Lambda functions.

This module provides a structured logger that outputs JSON-formatted
logs with correlation IDs, context, and standardized fields for
CloudWatch Logs Insights queries.
"""

import json
import logging
import os
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        return super().default(obj)


class StructuredLogger:
    """
    Structured JSON logger for Lambda functions.

    Outputs logs in JSON format with:
    - Timestamp (ISO 8601)
    - Log level
    - Correlation IDs (sessionId, userId, requestId)
    - Component and operation
    - Message and additional context
    """

    def __init__(
        self,
        component: str,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None
    ):
        """
        Initialize structured logger.

        Args:
            component: Component name (e.g., 'CacheManager', 'VoiceSessionManager')
            session_id: Session identifier for correlation
            user_id: User identifier for correlation
            request_id: Request identifier from Lambda context
        """
        self.component = component
        self.session_id = session_id
        self.user_id = user_id
        self.request_id = request_id
        self.logger = logging.getLogger(component)

        log_level = os.getenv('LOG_LEVEL', 'INFO')
        self.logger.setLevel(getattr(logging, log_level))

    def _format_log(
        self,
        level: str,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ) -> str:
        """
        Format log entry as JSON.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR)
            message: Log message
            operation: Operation being performed
            **kwargs: Additional context fields

        Returns:
            JSON-formatted log string
        """
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': level,
            'component': self.component,
            'message': message
        }

        if self.session_id:
            log_entry['sessionId'] = self.session_id
        if self.user_id:
            log_entry['userId'] = self.user_id
        if self.request_id:
            log_entry['requestId'] = self.request_id

        if operation:
            log_entry['operation'] = operation

        if kwargs:
            log_entry['context'] = kwargs

        return json.dumps(log_entry, cls=DecimalEncoder, default=str)

    def debug(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ) -> None:
        """
        Log debug message.

        Args:
            message: Log message
            operation: Operation being performed
            **kwargs: Additional context
        """
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                self._format_log('DEBUG', message, operation, **kwargs)
            )

    def info(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ) -> None:
        """
        Log info message.

        Args:
            message: Log message
            operation: Operation being performed
            **kwargs: Additional context
        """
        self.logger.info(
            self._format_log('INFO', message, operation, **kwargs)
        )

    def warning(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ) -> None:
        """
        Log warning message.

        Args:
            message: Log message
            operation: Operation being performed
            **kwargs: Additional context
        """
        self.logger.warning(
            self._format_log('WARNING', message, operation, **kwargs)
        )

    def error(
        self,
        message: str,
        operation: Optional[str] = None,
        error: Optional[Exception] = None,
        **kwargs
    ) -> None:
        """
        Log error message.

        Args:
            message: Log message
            operation: Operation being performed
            error: Exception object if available
            **kwargs: Additional context
        """
        if error:
            kwargs['error_type'] = type(error).__name__
            kwargs['error_message'] = str(error)

        self.logger.error(
            self._format_log('ERROR', message, operation, **kwargs)
        )

    def log_state_change(
        self,
        state_type: str,
        old_value: Any,
        new_value: Any,
        **kwargs
    ) -> None:
        """
        Log state change at INFO level.

        Args:
            state_type: Type of state (sessionStatus, processingLock, ...)
            old_value: Previous value
            new_value: New value
        """
        self.info(
            f'State change: {state_type}',
            operation='state_change',
            state_type=state_type,
            old_value=str(old_value),
            new_value=str(new_value),
            **kwargs
        )


class LoggingContext:
    """
    Context manager for logging operation duration.

    Automatically logs operation start, end, and duration.
    """

    def __init__(
        self,
        logger: StructuredLogger,
        operation: str,
        **kwargs
    ):
        """
        Initialize logging context.

        Args:
            logger: StructuredLogger instance
            operation: Operation name
            **kwargs: Additional context
        """
        self.logger = logger
        self.operation = operation
        self.context = kwargs
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        """Log operation start."""
        self.start_time = time.time()
        self.logger.debug(
            f'Starting operation: {self.operation}',
            operation=self.operation,
            **self.context
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Log operation end and duration."""
        if self.start_time is not None:
            self.duration_ms = (time.time() - self.start_time) * 1000

            if exc_type is not None:
                self.logger.error(
                    f'Operation failed: {self.operation}',
                    operation=self.operation,
                    error=exc_val,
                    duration_ms=self.duration_ms,
                    **self.context
                )
            else:
                self.logger.info(
                    f'Completed operation: {self.operation}',
                    operation=self.operation,
                    duration_ms=self.duration_ms,
                    **self.context
                )


def get_structured_logger(
    component: str,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> StructuredLogger:
    """
    Factory function for creating StructuredLogger instances.

    Args:
        component: Name of the component (e.g., 'CacheManager')
        session_id: Optional session ID for context
        user_id: Optional user ID for context
        request_id: Optional request ID from Lambda context

    Returns:
        Configured StructuredLogger instance

    Example:
        >>> logger = get_structured_logger('VoiceSessionManager', user_id='u1')
        >>> logger.info('Voice session started', operation='start_session')
    """
    return StructuredLogger(
        component=component,
        session_id=session_id,
        user_id=user_id,
        request_id=request_id
    )


def configure_lambda_logging():
    """
    Configure logging for Lambda environment.

    Sets up root logger to output to stdout with appropriate format.
    Should be called at module level in Lambda handlers.
    """
    log_level = os.getenv('LOG_LEVEL', 'INFO')

    logging.basicConfig(
        level=getattr(logging, log_level),
        format='%(message)s',  # Just the message, we format as JSON
        force=True
    )

    # Disable boto3 debug logging unless explicitly enabled
    if log_level != 'DEBUG':
        logging.getLogger('boto3').setLevel(logging.WARNING)
        logging.getLogger('botocore').setLevel(logging.WARNING)
