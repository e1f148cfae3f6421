"""
Custom exceptions for data access layer.
"""


class DynamoDBError(Exception):
    """Base exception for DynamoDB operations."""
    pass


class ConditionalCheckFailedError(DynamoDBError):
    """Exception raised when a conditional check fails."""
    pass


class TransactionConflictError(DynamoDBError):
    """
    Exception raised when a TransactWriteItems call is cancelled.

    Cancellation happens when any condition in the transaction fails or
    when another transaction touched the same items concurrently. None of
    the writes in the transaction were applied.
    """

    def __init__(self, message: str, reasons=None):
        """
        Initialize transaction conflict error.

        Args:
            message: Error message
            reasons: Cancellation reason codes, one per transaction item
        """
        super().__init__(message)
        self.reasons = list(reasons or [])

    @property
    def condition_failed(self) -> bool:
        """True if at least one item failed its condition expression."""
        return 'ConditionalCheckFailed' in self.reasons

    def condition_failed_at(self, index: int) -> bool:
        """True if the transaction item at ``index`` failed its condition."""
        return index < len(self.reasons) and self.reasons[index] == 'ConditionalCheckFailed'
