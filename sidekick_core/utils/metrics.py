"""
CloudWatch metrics utility for emitting custom metrics.

Provides methods for emitting:
- Cache metrics (hit rate, size, evictions)
- Voice session metrics (started, rejected, lock contention, reclaimed)
- Memory metrics (RSS, pressure events)

Metric emission is best-effort: failures are logged and never raised.
"""
import os
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import boto3

logger = logging.getLogger(__name__)


class MetricsPublisher:
    """
    CloudWatch metrics publisher for the Sidekick runtime core.
    """

    def __init__(self, namespace: str = 'Sidekick/Runtime', cloudwatch_client=None):
        """
        Initialize metrics publisher.

        Args:
            namespace: CloudWatch metrics namespace
            cloudwatch_client: Optional CloudWatch client for testing
        """
        self.namespace = namespace
        self.cloudwatch = cloudwatch_client or boto3.client(
            'cloudwatch', region_name=os.environ.get('AWS_REGION', 'us-east-1')
        )

    def put_latency_metric(
        self,
        metric_name: str,
        value: float,
        dimensions: Optional[Dict[str, str]] = None
    ):
        """
        Emit latency metric in milliseconds.

        Args:
            metric_name: Metric name (e.g., 'MemoryPressureCleanupLatency')
            value: Latency value in milliseconds
            dimensions: Metric dimensions
        """
        self.put_metric(metric_name, value, 'Milliseconds', dimensions)

    def put_count_metric(
        self,
        metric_name: str,
        value: int = 1,
        dimensions: Optional[Dict[str, str]] = None
    ):
        """
        Emit count metric.

        Args:
            metric_name: Metric name (e.g., 'VoiceSessionsRejected')
            value: Count value (default: 1)
            dimensions: Metric dimensions
        """
        self.put_metric(metric_name, value, 'Count', dimensions)

    def put_gauge_metric(
        self,
        metric_name: str,
        value: float,
        unit: str = 'Count',
        dimensions: Optional[Dict[str, str]] = None
    ):
        """
        Emit gauge metric.

        Args:
            metric_name: Metric name (e.g., 'MemoryCacheEntries')
            value: Gauge value
            unit: Metric unit
            dimensions: Metric dimensions
        """
        self.put_metric(metric_name, value, unit, dimensions)

    def put_metric(
        self,
        metric_name: str,
        value: float,
        unit: str = 'Count',
        dimensions: Optional[Dict[str, str]] = None
    ):
        """
        Put one metric datum to CloudWatch.

        Args:
            metric_name: Metric name
            value: Metric value
            unit: Metric unit
            dimensions: Metric dimensions as a name -> value mapping
        """
        metric_data = {
            'MetricName': metric_name,
            'Value': value,
            'Unit': unit,
            'Timestamp': datetime.now(timezone.utc)
        }

        if dimensions:
            metric_data['Dimensions'] = [
                {'Name': name, 'Value': str(dim_value)}
                for name, dim_value in dimensions.items()
            ]

        self._publish([metric_data])

    def _publish(self, metric_data: List[Dict]):
        """Send metric data, swallowing (and logging) any failure."""
        try:
            self.cloudwatch.put_metric_data(
                Namespace=self.namespace,
                MetricData=metric_data
            )
        except Exception as e:
            # Log error but don't fail the operation
            logger.warning(f"Failed to emit metrics {[m['MetricName'] for m in metric_data]}: {e}")

    def emit_cache_stats(self, hit_rate_percent: float, memory_entries: int, evictions: int):
        """
        Emit cache performance metrics in one call.

        Args:
            hit_rate_percent: Hit rate since the last emission (0-100)
            memory_entries: Current in-process tier size
            evictions: Entries evicted since the last emission
        """
        timestamp = datetime.now(timezone.utc)
        self._publish([
            {
                'MetricName': 'CacheHitRate',
                'Value': hit_rate_percent,
                'Unit': 'Percent',
                'Timestamp': timestamp
            },
            {
                'MetricName': 'MemoryCacheEntries',
                'Value': memory_entries,
                'Unit': 'Count',
                'Timestamp': timestamp
            },
            {
                'MetricName': 'MemoryCacheEvictions',
                'Value': evictions,
                'Unit': 'Count',
                'Timestamp': timestamp
            }
        ])

    def emit_session_started(self, persona_id: str):
        """
        Emit voice session started count metric.

        Args:
            persona_id: Persona the session was started for
        """
        self.put_count_metric('VoiceSessionsStarted', dimensions={'PersonaId': persona_id})

    def emit_session_rejected(self, reason: str):
        """
        Emit voice session rejection count metric.

        Args:
            reason: Rejection reason code
        """
        self.put_count_metric('VoiceSessionsRejected', dimensions={'Reason': reason})

    def emit_lock_contention(self):
        """Emit processing lock contention count metric."""
        self.put_count_metric('ProcessingLockContention')

    def emit_sessions_reclaimed(self, count: int):
        """
        Emit expired sessions reclaimed count metric.

        Args:
            count: Number of sessions removed by the sweep
        """
        self.put_count_metric('VoiceSessionsReclaimed', value=count)

    def emit_memory_usage(self, rss_mb: float, threshold_mb: float):
        """
        Emit process memory gauges.

        Args:
            rss_mb: Resident set size in MB
            threshold_mb: Configured pressure threshold in MB
        """
        self.put_gauge_metric('ProcessMemoryRSS', rss_mb, unit='Megabytes')
        self.put_gauge_metric(
            'ProcessMemoryUtilization',
            rss_mb / threshold_mb * 100 if threshold_mb else 0,
            unit='Percent'
        )

    def emit_memory_pressure(self, freed_mb: float):
        """
        Emit memory pressure event metrics.

        Args:
            freed_mb: Memory released by remediation (may be negative)
        """
        self.put_count_metric('MemoryPressureEvents')
        self.put_gauge_metric('MemoryFreedByCleanup', freed_mb, unit='Megabytes')
