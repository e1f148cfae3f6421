"""
Maintenance Handler for reclaiming expired voice sessions and cache entries.

This Lambda is triggered periodically by EventBridge to:
1. Delete voice sessions idle for more than SESSION_TIMEOUT_SECONDS and
   decrement their owners' active session counters
2. Delete expired entries from the durable cache tier
3. Sample process memory and remediate above MEMORY_THRESHOLD_MB
4. Emit summary metrics to CloudWatch
"""
import json

from sidekick_core.data_access.exceptions import DynamoDBError
from sidekick_core.services.cache_manager import CacheManager
from sidekick_core.services.memory_monitor import MemoryMonitor
from sidekick_core.services.voice_session_manager import VoiceSessionManager
from sidekick_core.utils.error_codes import ErrorCode, format_error_response
from sidekick_core.utils.metrics import MetricsPublisher
from sidekick_core.utils.structured_logger import (
    LoggingContext,
    configure_lambda_logging,
    get_structured_logger,
)

configure_lambda_logging()
logger = get_structured_logger('MaintenanceHandler')

# Initialize resources outside handler for reuse
metrics_publisher = MetricsPublisher()
session_manager = VoiceSessionManager(metrics_publisher=metrics_publisher)
cache_manager = CacheManager(metrics_publisher=metrics_publisher)
memory_monitor = MemoryMonitor(
    cache_manager=cache_manager,
    session_manager=session_manager,
    metrics_publisher=metrics_publisher
)


def run_maintenance() -> dict:
    """
    Run one maintenance pass.

    Returns:
        Dictionary with sessions reclaimed, cache entries removed and the
        memory sample in MB
    """
    sessions_reclaimed = session_manager.cleanup_expired_sessions()
    cache_entries_removed = cache_manager.cleanup()
    usage = memory_monitor.check_memory()

    return {
        'sessions_reclaimed': sessions_reclaimed,
        'cache_entries_removed': cache_entries_removed,
        'memory_rss_mb': round(usage.rss_mb, 2)
    }


def lambda_handler(event, context):
    """
    Handle periodic maintenance triggered by EventBridge.

    Args:
        event: EventBridge scheduled event
        context: Lambda context

    Returns:
        Response with status code and statistics
    """
    request_id = getattr(context, 'aws_request_id', None)

    try:
        with LoggingContext(logger, 'maintenance', request_id=request_id) as timing:
            stats = run_maintenance()

        # Emit summary metrics
        metrics_publisher.put_latency_metric('MaintenanceDuration', timing.duration_ms)
        metrics_publisher.put_count_metric(
            'CacheEntriesExpired', stats['cache_entries_removed']
        )
        cache_manager.emit_metrics()

        logger.info("Maintenance completed successfully", operation='lambda_handler', **stats)

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Maintenance completed',
                'statistics': stats
            })
        }

    except DynamoDBError as e:
        logger.error("Storage error in maintenance handler", operation='lambda_handler', error=e)
        return {
            'statusCode': 500,
            'body': json.dumps(format_error_response(
                ErrorCode.INTERNAL_DATABASE_ERROR, details=str(e), correlation_id=request_id
            ))
        }

    except Exception as e:
        logger.error("Unexpected error in maintenance handler", operation='lambda_handler', error=e)
        return {
            'statusCode': 500,
            'body': json.dumps(format_error_response(
                ErrorCode.INTERNAL_SERVER_ERROR, details=str(e), correlation_id=request_id
            ))
        }
