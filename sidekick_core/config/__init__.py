"""
Configuration module for the Sidekick runtime core.
"""

from .table_names import (
    CACHE_TABLE_NAME,
    VOICE_SESSIONS_TABLE_NAME,
    USER_STATS_TABLE_NAME,
    VOICE_SESSIONS_USER_INDEX,
    get_table_name
)
from .settings import CacheConfig, SessionConfig, MonitorConfig

__all__ = [
    'CACHE_TABLE_NAME',
    'VOICE_SESSIONS_TABLE_NAME',
    'USER_STATS_TABLE_NAME',
    'VOICE_SESSIONS_USER_INDEX',
    'get_table_name',
    'CacheConfig',
    'SessionConfig',
    'MonitorConfig'
]
