"""
DynamoDB table name constants.

This module provides centralized table name constants to ensure consistency
across the cache, voice session and maintenance components.
"""
import os
from typing import Optional

# Cache Table (durable tier of the two-tier cache)
CACHE_TABLE_NAME = 'SidekickCache'

# Voice Session Tables
VOICE_SESSIONS_TABLE_NAME = 'VoiceSessions'
USER_STATS_TABLE_NAME = 'UserStats'

# GSI on VoiceSessions partitioned by userId
VOICE_SESSIONS_USER_INDEX = 'userId-index'

# Table name mapping for environment variable overrides
# This allows table names to be overridden via environment variables
# while maintaining a consistent naming convention
TABLE_NAME_ENV_VARS = {
    'CACHE_TABLE_NAME': CACHE_TABLE_NAME,
    'VOICE_SESSIONS_TABLE_NAME': VOICE_SESSIONS_TABLE_NAME,
    'USER_STATS_TABLE_NAME': USER_STATS_TABLE_NAME,
}


def get_table_name(table_key: str, default: Optional[str] = None) -> str:
    """
    Get table name from environment variable or use default constant.

    Supports both the ``*_TABLE_NAME`` convention and the shorter legacy
    ``*_TABLE`` form.

    Args:
        table_key: Environment variable key (e.g., 'VOICE_SESSIONS_TABLE_NAME')
        default: Default table name if environment variable not set

    Returns:
        Table name from environment or default

    Example:
        >>> os.environ['CACHE_TABLE_NAME'] = 'SidekickCache-Dev'
        >>> get_table_name('CACHE_TABLE_NAME')
        'SidekickCache-Dev'
    """
    if default is None:
        default = TABLE_NAME_ENV_VARS.get(table_key, '')

    value = os.getenv(table_key)
    if value:
        return value

    legacy_key = table_key.replace('_TABLE_NAME', '_TABLE')
    value = os.getenv(legacy_key)
    if value:
        return value

    return default
