"""
Runtime services: two-tier cache, voice sessions and memory monitoring.
"""

from .cache_manager import CacheManager
from .memory_monitor import AudioBuffer, MemoryMonitor, MemoryUsage, decode_audio_buffer
from .voice_session_manager import (
    VoiceSessionManager,
    VoiceSessionError,
    SessionCapacityError,
    SessionCreationError,
    SessionNotFoundError,
    SessionNotActiveError,
    SessionExpiredError,
    LockContentionError,
    SessionOwnershipError,
)

__all__ = [
    'AudioBuffer',
    'CacheManager',
    'MemoryMonitor',
    'MemoryUsage',
    'decode_audio_buffer',
    'VoiceSessionManager',
    'VoiceSessionError',
    'SessionCapacityError',
    'SessionCreationError',
    'SessionNotFoundError',
    'SessionNotActiveError',
    'SessionExpiredError',
    'LockContentionError',
    'SessionOwnershipError',
]
