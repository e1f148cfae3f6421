"""
Repository for VoiceSessions and UserStats table operations.
"""
import json
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from .dynamodb_client import DynamoDBClient
from .exceptions import ConditionalCheckFailedError, TransactionConflictError
from ..config.table_names import VOICE_SESSIONS_USER_INDEX
from ..models.voice_session import SessionStatus, VoiceSession

logger = logging.getLogger(__name__)

# status is a DynamoDB reserved word
STATUS_NAMES = {'#status': 'status'}


# Transaction item positions in create_session
CREATE_PUT_INDEX = 0
CREATE_COUNTER_INDEX = 1


class VoiceSessionsRepository:
    """
    Repository for managing voice session records and per-user counters.

    Every mutation is a single conditional write or a TransactWriteItems
    call, so the checks hold across concurrently running instances.

    UserStats keeps two counters: ``activeVoiceSessions`` counts session
    records that have not been deleted yet, ``liveVoiceSessions`` counts
    those still in active or processing status and backs the concurrency cap.
    """

    def __init__(
        self,
        sessions_table_name: str,
        user_stats_table_name: str,
        dynamodb_client: Optional[DynamoDBClient] = None,
        user_index_name: str = VOICE_SESSIONS_USER_INDEX
    ):
        """
        Initialize VoiceSessions repository.

        Args:
            sessions_table_name: Name of the VoiceSessions table
            user_stats_table_name: Name of the UserStats table
            dynamodb_client: Optional DynamoDB client instance
            user_index_name: GSI on VoiceSessions keyed by userId
        """
        self.sessions_table_name = sessions_table_name
        self.user_stats_table_name = user_stats_table_name
        self.user_index_name = user_index_name
        self.client = dynamodb_client or DynamoDBClient()

    def create_session(self, session: VoiceSession, max_live_sessions: int) -> None:
        """
        Create a session and count it against its user in one transaction.

        The counter update is conditioned on the user having fewer than
        ``max_live_sessions`` live sessions, so the cap holds across
        instances.

        Args:
            session: Session to create
            max_live_sessions: Per-user cap on live sessions

        Raises:
            TransactionConflictError: If the session ID already exists, the
                user is at the cap (item CREATE_COUNTER_INDEX failed its
                condition) or the transaction conflicted
        """
        self.client.transact_write_items([
            {
                'Put': {
                    'TableName': self.sessions_table_name,
                    'Item': session.to_item(),
                    'ConditionExpression': 'attribute_not_exists(sessionId)'
                }
            },
            {
                'Update': {
                    'TableName': self.user_stats_table_name,
                    'Key': {'userId': session.user_id},
                    'UpdateExpression': (
                        'ADD activeVoiceSessions :one, liveVoiceSessions :one '
                        'SET lastVoiceActivity = :now'
                    ),
                    'ConditionExpression': (
                        'attribute_not_exists(liveVoiceSessions) OR liveVoiceSessions < :max'
                    ),
                    'ExpressionAttributeValues': {
                        ':one': 1,
                        ':now': session.start_time,
                        ':max': max_live_sessions
                    }
                }
            }
        ])
        logger.info(f"Created voice session {session.session_id} for user {session.user_id}")
    def get_session(self, session_id: str) -> Optional[VoiceSession]:
        """
        Get session by ID using a strongly consistent read.

        Args:
            session_id: Session identifier

        Returns:
            VoiceSession or None if not found
        """
        item = self.client.get_item(
            table_name=self.sessions_table_name,
            key={'sessionId': session_id},
            consistent_read=True
        )
        return VoiceSession.from_item(item) if item else None

    def get_user_sessions(
        self,
        user_id: str,
        statuses: Optional[List[SessionStatus]] = None
    ) -> List[VoiceSession]:
        """
        Get a user's sessions, optionally filtered by status.

        Args:
            user_id: Owning user
            statuses: Only return sessions in these states

        Returns:
            List of sessions
        """
        kwargs: Dict[str, Any] = {
            'key_condition_expression': 'userId = :uid',
            'expression_attribute_values': {':uid': user_id},
        }
        if statuses:
            placeholders = []
            for index, status in enumerate(statuses):
                placeholder = f':s{index}'
                placeholders.append(placeholder)
                kwargs['expression_attribute_values'][placeholder] = status.value
            kwargs['filter_expression'] = f"#status IN ({', '.join(placeholders)})"
            kwargs['expression_attribute_names'] = STATUS_NAMES

        items = self.client.query(
            table_name=self.sessions_table_name,
            index_name=self.user_index_name,
            **kwargs
        )
        return [VoiceSession.from_item(item) for item in items]

    def acquire_lock(
        self,
        session_id: str,
        processor_id: str,
        now_ms: int,
        start_cutoff_ms: int,
        stale_cutoff_ms: int
    ) -> None:
        """
        Atomically take the processing lock of a session.

        The write succeeds only if the session exists, is still live, started
        at or after ``start_cutoff_ms`` and is either unlocked or its last
        activity is at or before ``stale_cutoff_ms``.

        Args:
            session_id: Session identifier
            processor_id: Identity of the processor taking the lock
            now_ms: Current time
            start_cutoff_ms: Oldest acceptable session start time
            stale_cutoff_ms: Lock holders idle since this time may be replaced

        Raises:
            ConditionalCheckFailedError: If any of the conditions is not met
        """
        self.client.update_item(
            table_name=self.sessions_table_name,
            key={'sessionId': session_id},
            update_expression='SET processingLock = :pid, #status = :processing, lastActivity = :now',
            condition_expression=(
                'attribute_exists(sessionId) '
                'AND startTime >= :start_cutoff '
                'AND #status IN (:active, :processing) '
                'AND (attribute_not_exists(processingLock) OR lastActivity <= :stale_cutoff)'
            ),
            expression_attribute_names=STATUS_NAMES,
            expression_attribute_values={
                ':pid': processor_id,
                ':processing': SessionStatus.PROCESSING.value,
                ':active': SessionStatus.ACTIVE.value,
                ':now': now_ms,
                ':start_cutoff': start_cutoff_ms,
                ':stale_cutoff': stale_cutoff_ms
            }
        )
        logger.info(f"Processor {processor_id} locked session {session_id}")

    def release_lock(
        self,
        session_id: str,
        processor_id: str,
        final_status: SessionStatus,
        now_ms: int
    ) -> bool:
        """
        Clear the processing lock if ``processor_id`` still owns it.

        The session leaves the live states, so the owner's live counter is
        decremented in the same transaction.

        Args:
            session_id: Session identifier
            processor_id: Identity of the releasing processor
            final_status: Status to record (completed or error)
            now_ms: Current time

        Returns:
            True if released, False if the session is gone or owned by
            another processor

        Raises:
            TransactionConflictError: If the transaction conflicted with
                another one
        """
        session = self.get_session(session_id)
        if session is None or session.processing_lock != processor_id:
            return False

        try:
            self.client.transact_write_items([
                {
                    'Update': {
                        'TableName': self.sessions_table_name,
                        'Key': {'sessionId': session_id},
                        'UpdateExpression': (
                            'REMOVE processingLock SET #status = :final, lastActivity = :now'
                        ),
                        'ConditionExpression': 'processingLock = :pid AND userId = :uid',
                        'ExpressionAttributeNames': STATUS_NAMES,
                        'ExpressionAttributeValues': {
                            ':pid': processor_id,
                            ':uid': session.user_id,
                            ':final': final_status.value,
                            ':now': now_ms
                        }
                    }
                },
                {
                    'Update': {
                        'TableName': self.user_stats_table_name,
                        'Key': {'userId': session.user_id},
                        'UpdateExpression': 'ADD liveVoiceSessions :dec',
                        'ExpressionAttributeValues': {':dec': -1}
                    }
                }
            ])
        except TransactionConflictError as e:
            if e.condition_failed_at(0):
                return False
            raise

        logger.info(f"Processor {processor_id} released session {session_id} as {final_status.value}")
        return True

    def set_processed_data(
        self,
        session_id: str,
        processor_id: str,
        data: Any,
        now_ms: int
    ) -> bool:
        """
        Store the lock holder's result on the session.

        Args:
            session_id: Session identifier
            processor_id: Identity of the writing processor
            data: JSON-serializable result
            now_ms: Current time

        Returns:
            True if stored, False if ``processor_id`` does not hold the lock
        """
        try:
            self.client.update_item(
                table_name=self.sessions_table_name,
                key={'sessionId': session_id},
                update_expression='SET processedData = :data, lastActivity = :now',
                condition_expression='processingLock = :pid',
                expression_attribute_values={
                    ':pid': processor_id,
                    ':data': json.dumps(data),
                    ':now': now_ms
                }
            )
        except ConditionalCheckFailedError:
            return False
        return True

    def touch(self, session_id: str, now_ms: int) -> bool:
        """
        Refresh lastActivity of an existing session.

        Returns:
            False if the session does not exist
        """
        try:
            self.client.update_item(
                table_name=self.sessions_table_name,
                key={'sessionId': session_id},
                update_expression='SET lastActivity = :now',
                condition_expression='attribute_exists(sessionId)',
                expression_attribute_values={':now': now_ms}
            )
        except ConditionalCheckFailedError:
            return False
        return True

    def delete_session(self, session_id: str, user_id: str, status: SessionStatus) -> None:
        """
        Delete an owned session and move it from the active to the total counter.

        The delete is conditioned on the status the caller read, so the live
        counter is decremented exactly when a live session goes away.

        Args:
            session_id: Session identifier
            user_id: Expected owner
            status: Status of the session when it was read

        Raises:
            TransactionConflictError: If the session is gone, owned by
                someone else, changed status, or the transaction conflicted
        """
        update_expression = 'ADD activeVoiceSessions :dec, totalVoiceSessions :one'
        if status in SessionStatus.live():
            update_expression += ', liveVoiceSessions :dec'

        self.client.transact_write_items([
            {
                'Delete': {
                    'TableName': self.sessions_table_name,
                    'Key': {'sessionId': session_id},
                    'ConditionExpression': 'userId = :uid AND #status = :status',
                    'ExpressionAttributeNames': STATUS_NAMES,
                    'ExpressionAttributeValues': {':uid': user_id, ':status': status.value}
                }
            },
            {
                'Update': {
                    'TableName': self.user_stats_table_name,
                    'Key': {'userId': user_id},
                    'UpdateExpression': update_expression,
                    'ExpressionAttributeValues': {':dec': -1, ':one': 1}
                }
            }
        ])
        logger.info(f"Deleted voice session {session_id} for user {user_id}")

    def find_expired_sessions(
        self,
        activity_cutoff_ms: int,
        limit: int,
        user_id: Optional[str] = None,
        max_pages: Optional[int] = None
    ) -> List[VoiceSession]:
        """
        Find sessions whose last activity is older than the cutoff.

        Each request reads at most ``limit`` items and at most ``max_pages``
        requests are made, so the read cost is bounded even when few
        sessions are expired.

        Args:
            activity_cutoff_ms: Sessions with lastActivity < cutoff are expired
            limit: Maximum number of sessions to return
            user_id: Restrict the search to one user
            max_pages: Maximum number of requests (None reads until done)

        Returns:
            Expired sessions
        """
        if user_id:
            items = self.client.query(
                table_name=self.sessions_table_name,
                index_name=self.user_index_name,
                key_condition_expression='userId = :uid',
                filter_expression='lastActivity < :cutoff',
                expression_attribute_values={':uid': user_id, ':cutoff': activity_cutoff_ms},
                max_items=limit,
                page_size=limit,
                max_pages=max_pages
            )
        else:
            items = self.client.scan(
                table_name=self.sessions_table_name,
                filter_expression='lastActivity < :cutoff',
                expression_attribute_values={':cutoff': activity_cutoff_ms},
                max_items=limit,
                page_size=limit,
                max_pages=max_pages
            )
        return [VoiceSession.from_item(item) for item in items]

    def delete_expired_sessions(
        self,
        sessions: List[VoiceSession],
        activity_cutoff_ms: int
    ) -> Dict[str, int]:
        """
        Delete expired sessions and decrement their owners' counters atomically.

        Each delete re-checks expiry and the status that was read, so a
        session refreshed or finished after it was found is never removed
        with the wrong counters; in that case nothing is applied.

        Args:
            sessions: Sessions returned by find_expired_sessions
            activity_cutoff_ms: Same cutoff used to find them

        Returns:
            Number of deleted sessions per user

        Raises:
            TransactionConflictError: If any session changed in the meantime
        """
        if not sessions:
            return {}

        per_user = Counter(session.user_id for session in sessions)
        live_per_user = Counter(session.user_id for session in sessions if session.is_live)
        actions: List[Dict[str, Any]] = [
            {
                'Delete': {
                    'TableName': self.sessions_table_name,
                    'Key': {'sessionId': session.session_id},
                    'ConditionExpression': (
                        'attribute_exists(sessionId) AND lastActivity < :cutoff '
                        'AND #status = :status'
                    ),
                    'ExpressionAttributeNames': STATUS_NAMES,
                    'ExpressionAttributeValues': {
                        ':cutoff': activity_cutoff_ms,
                        ':status': session.status.value
                    }
                }
            }
            for session in sessions
        ]
        actions.extend(
            {
                'Update': {
                    'TableName': self.user_stats_table_name,
                    'Key': {'userId': user_id},
                    'UpdateExpression': 'ADD activeVoiceSessions :dec, liveVoiceSessions :live_dec',
                    'ExpressionAttributeValues': {
                        ':dec': -count,
                        ':live_dec': -live_per_user[user_id]
                    }
                }
            }
            for user_id, count in per_user.items()
        )

        self.client.transact_write_items(actions)
        logger.info(f"Deleted {len(sessions)} expired voice sessions")
        return dict(per_user)

    def get_live_session_count(self, user_id: str) -> int:
        """
        Get the user's live session counter with a strongly consistent read.

        Args:
            user_id: User identifier

        Returns:
            Number of live sessions (0 if the user never started one)
        """
        stats = self.get_user_stats(user_id) or {}
        return int(stats.get('liveVoiceSessions', 0))

    def get_user_stats(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a user's session counters.

        Args:
            user_id: User identifier

        Returns:
            UserStats item or None if the user never started a session
        """
        return self.client.get_item(
            table_name=self.user_stats_table_name,
            key={'userId': user_id},
            consistent_read=True
        )
