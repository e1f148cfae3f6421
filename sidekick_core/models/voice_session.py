"""
VoiceSession model for per-user voice processing sessions.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class SessionStatus(str, Enum):
    """
    Lifecycle states of a voice session.

    active -> processing -> completed | error. Finished sessions are
    terminal and only leave the table by deletion.
    """

    ACTIVE = 'active'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    ERROR = 'error'

    @classmethod
    def live(cls):
        """States that count against the per-user concurrency cap."""
        return (cls.ACTIVE, cls.PROCESSING)

    @classmethod
    def final(cls):
        """States a processor may release a lock into."""
        return (cls.COMPLETED, cls.ERROR)


@dataclass
class VoiceSession:
    """
    Voice processing session record.

    Timestamps are Unix epoch milliseconds.

    Attributes:
        session_id: Generated identifier
        user_id: Owning user
        persona_id: Chat persona the session belongs to
        status: Current SessionStatus
        start_time: Creation time
        last_activity: Last lock change or heartbeat
        processing_lock: Processor id holding the lock, None when unlocked
        audio_buffer: Optional audio payload supplied at start
        processed_data: Optional opaque result written by the lock holder
    """
    session_id: str
    user_id: str
    persona_id: str
    status: SessionStatus
    start_time: int
    last_activity: int
    processing_lock: Optional[str] = None
    audio_buffer: Optional[bytes] = None
    processed_data: Any = None

    @property
    def is_live(self) -> bool:
        return self.status in SessionStatus.live()

    def to_item(self) -> Dict[str, Any]:
        """
        Convert to dictionary for DynamoDB storage.

        No DynamoDB TTL is set: sessions are only removed by end_session or
        the expiry sweep, which keep the per-user counters in step.

        Returns:
            Item dictionary; absent optional fields are omitted
        """
        item = {
            'sessionId': self.session_id,
            'userId': self.user_id,
            'personaId': self.persona_id,
            'status': self.status.value,
            'startTime': self.start_time,
            'lastActivity': self.last_activity,
        }
        if self.processing_lock:
            item['processingLock'] = self.processing_lock
        if self.audio_buffer:
            item['audioBuffer'] = bytes(self.audio_buffer)
        if self.processed_data is not None:
            item['processedData'] = json.dumps(self.processed_data)
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'VoiceSession':
        """
        Create VoiceSession from a DynamoDB item.

        Args:
            item: Item as returned by the DynamoDB resource API

        Returns:
            VoiceSession instance
        """
        audio = item.get('audioBuffer')
        if audio is not None and not isinstance(audio, bytes):
            # boto3 wraps binary attributes in boto3.dynamodb.types.Binary
            audio = bytes(audio)

        processed = item.get('processedData')
        return cls(
            session_id=item['sessionId'],
            user_id=item['userId'],
            persona_id=item.get('personaId', ''),
            status=SessionStatus(item['status']),
            start_time=int(item['startTime']),
            last_activity=int(item['lastActivity']),
            processing_lock=item.get('processingLock'),
            audio_buffer=audio,
            processed_data=json.loads(processed) if processed is not None else None
        )
