"""
Voice Session Manager.

This module manages short-lived voice processing sessions: a per-user
concurrency cap, a burst limit, and a processing lock that lets at most one
processor work a session at a time. All cross-instance invariants are
enforced with DynamoDB conditional writes and transactions; a crashed
processor's lock becomes reclaimable after the processing timeout.
"""

import time
import uuid
from typing import Any, Callable, List, Optional, Tuple, Union

from ..config.settings import SessionConfig
from ..config.table_names import get_table_name
from ..data_access.exceptions import (
    ConditionalCheckFailedError,
    DynamoDBError,
    TransactionConflictError,
)
from ..data_access.voice_sessions_repository import (
    CREATE_COUNTER_INDEX,
    CREATE_PUT_INDEX,
    VoiceSessionsRepository,
)
from ..models.voice_session import SessionStatus, VoiceSession
from ..utils.error_codes import ErrorCode, get_error_message, get_http_status
from ..utils.metrics import MetricsPublisher
from ..utils.structured_logger import get_structured_logger

logger = get_structured_logger('VoiceSessionManager')

# end_session re-reads and retries once when the session changed under it
END_SESSION_ATTEMPTS = 2


class VoiceSessionError(Exception):
    """Base exception for voice session operations."""

    error_code = ErrorCode.INTERNAL_SERVER_ERROR

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or get_error_message(self.error_code))

    @property
    def http_status(self) -> int:
        """HTTP status a request handler should answer with."""
        return get_http_status(self.error_code)


class SessionCapacityError(VoiceSessionError):
    """Raised when a user already has the maximum number of live sessions."""
    error_code = ErrorCode.SESSION_CAPACITY_REACHED


class SessionCreationError(VoiceSessionError):
    """Raised when the session record could not be created."""
    error_code = ErrorCode.SESSION_CREATION_FAILED


class SessionNotFoundError(VoiceSessionError):
    """Raised when the session does not exist."""
    error_code = ErrorCode.SESSION_NOT_FOUND


class SessionNotActiveError(VoiceSessionError):
    """Raised when locking a session that already completed or failed."""
    error_code = ErrorCode.SESSION_NOT_ACTIVE


class SessionExpiredError(VoiceSessionError):
    """Raised when the session is older than the session timeout."""
    error_code = ErrorCode.SESSION_EXPIRED


class LockContentionError(VoiceSessionError):
    """Raised when another processor holds a live processing lock."""
    error_code = ErrorCode.SESSION_LOCKED


class SessionOwnershipError(VoiceSessionError):
    """Raised when a user acts on a session owned by someone else."""
    error_code = ErrorCode.AUTH_UNAUTHORIZED


class VoiceSessionManager:
    """
    Manages voice processing sessions with race condition protection.
    """

    def __init__(
        self,
        repository: Optional[VoiceSessionsRepository] = None,
        config: Optional[SessionConfig] = None,
        metrics_publisher: Optional[MetricsPublisher] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Optional[Callable[[str, int], str]] = None
    ):
        """
        Initialize Voice Session Manager.

        Args:
            repository: Session storage (defaults to the configured tables)
            config: Session configuration (defaults to SessionConfig.from_env())
            metrics_publisher: Optional CloudWatch publisher
            clock: Time source returning epoch seconds
            id_factory: Optional (user_id, now_ms) -> session ID generator
        """
        self.repository = repository or VoiceSessionsRepository(
            get_table_name('VOICE_SESSIONS_TABLE_NAME'),
            get_table_name('USER_STATS_TABLE_NAME')
        )
        self.config = config or SessionConfig.from_env()
        self.metrics_publisher = metrics_publisher
        self.clock = clock
        self.id_factory = id_factory or self._generate_session_id

    @staticmethod
    def _generate_session_id(user_id: str, now_ms: int) -> str:
        return f"voice_{user_id}_{now_ms}_{uuid.uuid4().hex[:9]}"

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    @property
    def _session_timeout_ms(self) -> int:
        return int(self.config.session_timeout_seconds * 1000)

    @property
    def _processing_timeout_ms(self) -> int:
        return int(self.config.processing_timeout_seconds * 1000)

    def start_session(
        self,
        user_id: str,
        persona_id: str,
        audio_buffer: Optional[bytes] = None
    ) -> str:
        """
        Start a new voice session.

        If the user's live counter is at the cap, their expired sessions are
        swept first. The cap itself is enforced by the transaction that
        creates the session, so it holds across instances.

        Args:
            user_id: Owning user
            persona_id: Persona the session talks to
            audio_buffer: Optional initial audio payload

        Returns:
            The new session ID

        Raises:
            SessionCapacityError: If the user is still at the cap
            SessionCreationError: If the record could not be created
            DynamoDBError: On storage failures
        """
        max_sessions = self.config.max_concurrent_sessions

        if self.repository.get_live_session_count(user_id) >= max_sessions:
            self.cleanup_expired_sessions(user_id)

        now_ms = self._now_ms()
        session = VoiceSession(
            session_id=self.id_factory(user_id, now_ms),
            user_id=user_id,
            persona_id=persona_id,
            status=SessionStatus.ACTIVE,
            start_time=now_ms,
            last_activity=now_ms,
            audio_buffer=audio_buffer
        )

        try:
            self.repository.create_session(session, max_sessions)
        except TransactionConflictError as e:
            if e.condition_failed_at(CREATE_PUT_INDEX):
                raise SessionCreationError('Session ID collision detected') from e
            if e.condition_failed_at(CREATE_COUNTER_INDEX):
                logger.warning(
                    f"Voice session refused for user {user_id}: capacity reached",
                    operation='start_session',
                    user_id=user_id,
                    max_sessions=max_sessions
                )
                self._emit('emit_session_rejected', ErrorCode.SESSION_CAPACITY_REACHED.value)
                raise SessionCapacityError() from e
            raise SessionCreationError(f'Failed to start voice session: {e}') from e

        logger.info(
            f"Voice session started: {session.session_id} for user {user_id}",
            operation='start_session',
            session_id=session.session_id,
            user_id=user_id,
            persona_id=persona_id
        )
        self._emit('emit_session_started', persona_id)
        return session.session_id

    def acquire_processing_lock(self, session_id: str, processor_id: str) -> None:
        """
        Take the exclusive processing lock of a session.

        Succeeds if the session is unlocked or its holder has been idle for
        at least the processing timeout; sets status to processing.

        Args:
            session_id: Session identifier
            processor_id: Identity of the processor

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionNotActiveError: If the session already finished
            LockContentionError: If another processor holds a live lock
            SessionExpiredError: If the session outlived the session timeout
            DynamoDBError: On storage failures
        """
        now_ms = self._now_ms()

        try:
            self.repository.acquire_lock(
                session_id=session_id,
                processor_id=processor_id,
                now_ms=now_ms,
                start_cutoff_ms=now_ms - self._session_timeout_ms,
                stale_cutoff_ms=now_ms - self._processing_timeout_ms
            )
        except ConditionalCheckFailedError:
            error = self._lock_failure_reason(session_id, now_ms)
            logger.info(
                f"Processing lock refused for {processor_id}: {error}",
                operation='acquire_processing_lock',
                session_id=session_id,
                error_code=error.error_code.value
            )
            if isinstance(error, LockContentionError):
                self._emit('emit_lock_contention')
            raise error

        logger.log_state_change(
            'processingLock', None, processor_id, session_id=session_id
        )

    def _lock_failure_reason(self, session_id: str, now_ms: int) -> VoiceSessionError:
        """Work out which lock condition failed from a fresh read."""
        session = self.repository.get_session(session_id)

        if session is None:
            return SessionNotFoundError('Session not found')
        if not session.is_live:
            return SessionNotActiveError(f'Session is {session.status.value}')
        if session.processing_lock and now_ms - session.last_activity < self._processing_timeout_ms:
            return LockContentionError('Session is already being processed')
        if now_ms - session.start_time > self._session_timeout_ms:
            return SessionExpiredError('Session has expired')
        # The session changed between the write and the read
        return LockContentionError('Session lock changed concurrently')

    def release_processing_lock(
        self,
        session_id: str,
        processor_id: str,
        final_status: Union[SessionStatus, str] = SessionStatus.COMPLETED
    ) -> bool:
        """
        Release the processing lock and record the final status.

        Only the current lock owner can release; a superseded processor or
        a missing session is a silent no-op.

        Args:
            session_id: Session identifier
            processor_id: Identity of the releasing processor
            final_status: completed or error

        Returns:
            True if the lock was released by this call

        Raises:
            ValueError: If final_status is not completed or error
            DynamoDBError: On storage failures
        """
        status = SessionStatus(final_status)
        if status not in SessionStatus.final():
            raise ValueError(f"final_status must be completed or error, got {status.value}")

        released = self.repository.release_lock(session_id, processor_id, status, self._now_ms())

        if released:
            logger.log_state_change(
                'sessionStatus', SessionStatus.PROCESSING.value, status.value,
                session_id=session_id
            )
        else:
            logger.debug(
                f"Release by {processor_id} ignored: not the lock owner",
                operation='release_processing_lock',
                session_id=session_id
            )
        return released

    def end_session(self, session_id: str, user_id: str) -> None:
        """
        End (delete) a session owned by the user.

        Args:
            session_id: Session identifier
            user_id: User asking to end it

        Raises:
            SessionOwnershipError: If the session belongs to another user
            DynamoDBError: On storage failures
        """
        session = self.repository.get_session(session_id)

        for attempt in range(END_SESSION_ATTEMPTS):
            if session is None:
                # Missing or removed concurrently
                return
            if session.user_id != user_id:
                raise SessionOwnershipError('Unauthorized session access')

            try:
                self.repository.delete_session(session_id, user_id, session.status)
                break
            except TransactionConflictError:
                if attempt == END_SESSION_ATTEMPTS - 1:
                    raise
                # The status may have changed since it was read
                session = self.repository.get_session(session_id)

        logger.info(
            f"Voice session ended: {session_id}",
            operation='end_session',
            session_id=session_id,
            user_id=user_id
        )

    def cleanup_expired_sessions(self, user_id: Optional[str] = None) -> int:
        """
        Reclaim sessions inactive for longer than the session timeout.

        Deletes up to config.cleanup_batch_size sessions, reading at most
        config.cleanup_max_pages pages, and decrements the owners' counters
        in the same transaction.

        Args:
            user_id: Restrict the sweep to one user

        Returns:
            Number of sessions removed (0 if the batch raced with an update)

        Raises:
            DynamoDBError: On storage failures other than a cancelled batch
        """
        activity_cutoff_ms = self._now_ms() - self._session_timeout_ms

        expired = self.repository.find_expired_sessions(
            activity_cutoff_ms,
            self.config.cleanup_batch_size,
            user_id,
            self.config.cleanup_max_pages
        )
        if not expired:
            return 0

        try:
            self.repository.delete_expired_sessions(expired, activity_cutoff_ms)
        except TransactionConflictError as e:
            # Next sweep picks them up again
            logger.warning(
                "Expired session batch cancelled",
                operation='cleanup_expired_sessions',
                reasons=e.reasons
            )
            return 0

        logger.info(
            f"Cleaned up {len(expired)} expired voice sessions",
            operation='cleanup_expired_sessions',
            user_id=user_id
        )
        self._emit('emit_sessions_reclaimed', len(expired))
        return len(expired)

    def can_start_new_session(self, user_id: str) -> Tuple[bool, Optional[str]]:
        """
        Check whether a user may start a session right now. Read-only.

        Args:
            user_id: User identifier

        Returns:
            Tuple of (can_start, reason); reason is None when allowed
        """
        try:
            live_count = self.repository.get_live_session_count(user_id)
            active_sessions = self.get_active_sessions(user_id)
        except DynamoDBError as e:
            logger.error("Error checking session eligibility", operation='can_start_new_session', error=e)
            return False, 'Unable to verify session eligibility'

        if live_count >= self.config.max_concurrent_sessions:
            return False, f'Maximum concurrent sessions ({self.config.max_concurrent_sessions}) reached'

        now_ms = self._now_ms()
        window_ms = self.config.burst_window_seconds * 1000
        recent_sessions = [s for s in active_sessions if now_ms - s.start_time < window_ms]

        if len(recent_sessions) >= self.config.burst_limit:
            return False, 'Too many sessions started recently. Please wait a moment.'

        return True, None

    def get_active_sessions(self, user_id: str) -> List[VoiceSession]:
        """
        Get a user's sessions in active or processing status.

        Args:
            user_id: User identifier

        Returns:
            Live sessions
        """
        return self.repository.get_user_sessions(user_id, list(SessionStatus.live()))

    def get_session_status(self, session_id: str) -> Optional[VoiceSession]:
        """
        Get a session record.

        Args:
            session_id: Session identifier

        Returns:
            VoiceSession or None if not found
        """
        return self.repository.get_session(session_id)

    def update_session_activity(self, session_id: str) -> bool:
        """
        Heartbeat: refresh lastActivity, which also keeps a held lock live.

        Args:
            session_id: Session identifier

        Returns:
            False if the session does not exist
        """
        return self.repository.touch(session_id, self._now_ms())

    def set_processed_data(self, session_id: str, processor_id: str, data: Any) -> bool:
        """
        Store the lock holder's result on the session.

        Args:
            session_id: Session identifier
            processor_id: Identity of the processor
            data: JSON-serializable result

        Returns:
            False if processor_id does not hold the lock
        """
        return self.repository.set_processed_data(session_id, processor_id, data, self._now_ms())

    def _emit(self, method: str, *args) -> None:
        if self.metrics_publisher is not None:
            getattr(self.metrics_publisher, method)(*args)
