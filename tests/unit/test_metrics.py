"""
Unit tests for the CloudWatch metrics publisher.
"""
import pytest
from unittest.mock import Mock

from sidekick_core.utils.metrics import MetricsPublisher


@pytest.fixture
def mock_cloudwatch():
    return Mock()


@pytest.fixture
def publisher(mock_cloudwatch):
    return MetricsPublisher(namespace='Sidekick/Test', cloudwatch_client=mock_cloudwatch)


def published(mock_cloudwatch):
    """Flatten every published datum into a name -> datum mapping."""
    data = {}
    for call in mock_cloudwatch.put_metric_data.call_args_list:
        assert call[1]['Namespace'] == 'Sidekick/Test'
        for datum in call[1]['MetricData']:
            data[datum['MetricName']] = datum
    return data


class TestMetricsPublisher:
    """Test suite for MetricsPublisher."""

    def test_count_metric_with_dimensions(self, publisher, mock_cloudwatch):
        publisher.emit_session_started('coach')

        datum = published(mock_cloudwatch)['VoiceSessionsStarted']
        assert datum['Value'] == 1
        assert datum['Unit'] == 'Count'
        assert datum['Dimensions'] == [{'Name': 'PersonaId', 'Value': 'coach'}]

    def test_cache_stats_single_call(self, publisher, mock_cloudwatch):
        publisher.emit_cache_stats(hit_rate_percent=75.0, memory_entries=10, evictions=3)

        assert mock_cloudwatch.put_metric_data.call_count == 1
        data = published(mock_cloudwatch)
        assert data['CacheHitRate']['Unit'] == 'Percent'
        assert data['MemoryCacheEntries']['Value'] == 10
        assert data['MemoryCacheEvictions']['Value'] == 3

    def test_memory_usage(self, publisher, mock_cloudwatch):
        publisher.emit_memory_usage(rss_mb=256, threshold_mb=512)

        data = published(mock_cloudwatch)
        assert data['ProcessMemoryRSS']['Unit'] == 'Megabytes'
        assert data['ProcessMemoryUtilization']['Value'] == 50

    def test_sessions_reclaimed(self, publisher, mock_cloudwatch):
        publisher.emit_sessions_reclaimed(4)

        assert published(mock_cloudwatch)['VoiceSessionsReclaimed']['Value'] == 4

    def test_publish_failure_is_swallowed(self, publisher, mock_cloudwatch):
        """Test that CloudWatch errors never reach the caller."""
        mock_cloudwatch.put_metric_data.side_effect = Exception('throttled')

        publisher.emit_lock_contention()
        publisher.emit_memory_pressure(12.5)
