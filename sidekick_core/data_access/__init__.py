"""
Data access layer for DynamoDB operations.
"""
from .dynamodb_client import DynamoDBClient
from .cache_repository import CacheRepository
from .voice_sessions_repository import VoiceSessionsRepository
from .exceptions import (
    DynamoDBError,
    ConditionalCheckFailedError,
    TransactionConflictError,
)

__all__ = [
    'DynamoDBClient',
    'CacheRepository',
    'VoiceSessionsRepository',
    'DynamoDBError',
    'ConditionalCheckFailedError',
    'TransactionConflictError',
]
