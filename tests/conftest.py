"""
Pytest configuration and fixtures.
"""
import os
import sys

import boto3
import pytest
from moto import mock_aws

# Make the package importable without installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sidekick_core.config.settings import CacheConfig, SessionConfig
from sidekick_core.data_access.cache_repository import CacheRepository
from sidekick_core.data_access.dynamodb_client import DynamoDBClient
from sidekick_core.data_access.voice_sessions_repository import VoiceSessionsRepository

CACHE_TABLE = 'SidekickCache-test'
VOICE_SESSIONS_TABLE = 'VoiceSessions-test'
USER_STATS_TABLE = 'UserStats-test'

# Fixed start instant for the fake clock (epoch seconds)
T0 = 1_700_000_000


class FakeClock:
    """Controllable time source returning epoch seconds."""

    def __init__(self, start: float = T0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def aws_credentials():
    """Mock AWS credentials for testing."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture(scope="session", autouse=True)
def env_vars(aws_credentials):
    """Set up environment variables for tests."""
    os.environ["ENV"] = "test"
    os.environ["AWS_REGION"] = "us-east-1"
    os.environ["CACHE_TABLE_NAME"] = CACHE_TABLE
    os.environ["VOICE_SESSIONS_TABLE_NAME"] = VOICE_SESSIONS_TABLE
    os.environ["USER_STATS_TABLE_NAME"] = USER_STATS_TABLE
    os.environ["LOG_LEVEL"] = "INFO"


@pytest.fixture
def clock():
    """Fake clock starting at T0."""
    return FakeClock()


@pytest.fixture
def cache_config():
    """Small cache so eviction is easy to trigger."""
    return CacheConfig(
        default_ttl_seconds=900,
        max_cache_size_bytes=10_000,
        max_cache_entries=8,
        cleanup_interval_seconds=300,
        cleanup_batch_size=500
    )


@pytest.fixture
def session_config():
    """Default session limits."""
    return SessionConfig()


@pytest.fixture
def dynamodb_tables():
    """Create the cache, voice session and user stats tables in moto."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        # Create cache table
        dynamodb.create_table(
            TableName=CACHE_TABLE,
            KeySchema=[{'AttributeName': 'cacheKey', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'cacheKey', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )

        # Create VoiceSessions table with GSI
        dynamodb.create_table(
            TableName=VOICE_SESSIONS_TABLE,
            KeySchema=[{'AttributeName': 'sessionId', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'sessionId', 'AttributeType': 'S'},
                {'AttributeName': 'userId', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'userId-index',
                    'KeySchema': [{'AttributeName': 'userId', 'KeyType': 'HASH'}],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        # Create UserStats table
        dynamodb.create_table(
            TableName=USER_STATS_TABLE,
            KeySchema=[{'AttributeName': 'userId', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'userId', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb


@pytest.fixture
def dynamodb_client(dynamodb_tables):
    """DynamoDBClient bound to the moto tables."""
    return DynamoDBClient(region='us-east-1')


@pytest.fixture
def cache_repository(dynamodb_client):
    return CacheRepository(CACHE_TABLE, dynamodb_client)


@pytest.fixture
def voice_sessions_repository(dynamodb_client):
    return VoiceSessionsRepository(VOICE_SESSIONS_TABLE, USER_STATS_TABLE, dynamodb_client)
