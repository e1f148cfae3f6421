"""
Data models for the cache and voice session components.
"""

from .cache_entry import CacheEntry, detach_payload, serialize_payload
from .voice_session import SessionStatus, VoiceSession

__all__ = [
    'CacheEntry',
    'detach_payload',
    'serialize_payload',
    'SessionStatus',
    'VoiceSession'
]
