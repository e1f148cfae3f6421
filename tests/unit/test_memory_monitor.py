"""
Unit tests for MemoryMonitor.
"""
import base64
import time
import pytest
from unittest.mock import Mock, patch

from sidekick_core.config.settings import MB, MonitorConfig
from sidekick_core.services.cache_manager import CacheManager
from sidekick_core.services.memory_monitor import MemoryMonitor, decode_audio_buffer
from sidekick_core.services.voice_session_manager import VoiceSessionManager
from sidekick_core.utils.metrics import MetricsPublisher


def memory_info(rss_mb, vms_mb=1024):
    return Mock(rss=int(rss_mb * MB), vms=int(vms_mb * MB))


@pytest.fixture
def mock_process():
    """psutil process reporting 100 MB RSS."""
    process = Mock()
    process.memory_info.return_value = memory_info(100)
    return process


@pytest.fixture
def mock_cache_manager():
    cache_manager = Mock(spec=CacheManager)
    cache_manager.cleanup.return_value = 4
    return cache_manager


@pytest.fixture
def mock_session_manager():
    session_manager = Mock(spec=VoiceSessionManager)
    session_manager.cleanup_expired_sessions.return_value = 2
    return session_manager


@pytest.fixture
def monitor(mock_cache_manager, mock_session_manager, mock_process):
    return MemoryMonitor(
        cache_manager=mock_cache_manager,
        session_manager=mock_session_manager,
        config=MonitorConfig(memory_threshold_bytes=512 * MB, metrics_every_n_samples=2),
        metrics_publisher=Mock(spec=MetricsPublisher),
        process=mock_process
    )


class TestCheckMemory:
    """Test sampling and threshold handling."""

    def test_below_threshold_no_remediation(self, monitor, mock_cache_manager, mock_session_manager):
        usage = monitor.check_memory()

        assert usage.rss_mb == 100
        mock_cache_manager.cleanup.assert_not_called()
        mock_session_manager.cleanup_expired_sessions.assert_not_called()

    def test_above_threshold_runs_remediation(self, monitor, mock_process, mock_cache_manager, mock_session_manager):
        mock_process.memory_info.return_value = memory_info(600)

        usage = monitor.check_memory()

        assert usage.rss_mb == 600
        mock_session_manager.cleanup_expired_sessions.assert_called_once_with()
        mock_cache_manager.cleanup.assert_called_once_with()

    def test_metrics_published_every_n_samples(self, monitor):
        monitor.check_memory()
        monitor.metrics_publisher.emit_memory_usage.assert_not_called()

        monitor.check_memory()
        monitor.metrics_publisher.emit_memory_usage.assert_called_once_with(100, 512)


class TestHandleMemoryPressure:
    """Test remediation steps."""

    @patch('sidekick_core.services.memory_monitor.gc.collect', return_value=7)
    def test_runs_all_steps_in_order(self, mock_collect, monitor, mock_process):
        mock_process.memory_info.side_effect = [memory_info(600), memory_info(550)]

        results = monitor.handle_memory_pressure()

        assert results == {
            'buffers_released': 0,
            'sessions_cleaned': 2,
            'cache_entries_cleaned': 4,
            'objects_collected': 7,
            'memory_delta_mb': -50
        }
        monitor.metrics_publisher.emit_memory_pressure.assert_called_once_with(50)

    @patch('sidekick_core.services.memory_monitor.gc.collect', return_value=0)
    def test_failed_step_does_not_stop_others(self, mock_collect, monitor, mock_session_manager, mock_cache_manager):
        mock_session_manager.cleanup_expired_sessions.side_effect = RuntimeError('dynamo down')

        results = monitor.handle_memory_pressure()

        assert results['sessions_cleaned'] is None
        assert results['cache_entries_cleaned'] == 4
        mock_collect.assert_called_once()

    def test_without_managers_releases_buffers_and_collects(self, mock_process):
        monitor = MemoryMonitor(config=MonitorConfig(), process=mock_process)

        results = monitor.handle_memory_pressure()

        assert set(results) == {'buffers_released', 'objects_collected', 'memory_delta_mb'}

    def test_pressure_event_in_stats(self, monitor):
        monitor.handle_memory_pressure()

        stats = monitor.get_memory_stats()
        assert stats['last_pressure_event']['cache_entries_cleaned'] == 4


class TestGarbageCollectionHint:
    """Test suggest_garbage_collection."""

    @patch('sidekick_core.services.memory_monitor.gc.collect', return_value=3)
    def test_collects_above_hint_ratio(self, mock_collect, monitor, mock_process):
        mock_process.memory_info.return_value = memory_info(400)

        assert monitor.suggest_garbage_collection() is True
        mock_collect.assert_called_once()

    @patch('sidekick_core.services.memory_monitor.gc.collect')
    def test_skips_below_hint_ratio(self, mock_collect, monitor):
        assert monitor.suggest_garbage_collection() is False
        mock_collect.assert_not_called()


class TestMonitorFunction:
    """Test the monitor_function decorator."""

    def test_returns_result(self, monitor):
        @monitor.monitor_function('add')
        def add(a, b):
            return a + b

        assert add(2, 3) == 5
        assert add.__name__ == 'add'

    def test_reraises_exceptions(self, monitor):
        @monitor.monitor_function('boom')
        def boom():
            raise KeyError('missing')

        with pytest.raises(KeyError):
            boom()

    def test_warns_on_large_delta(self, monitor, mock_process):
        mock_process.memory_info.side_effect = [memory_info(100), memory_info(150)]

        @monitor.monitor_function('load', threshold_bytes=10 * MB)
        def load():
            return 'ok'

        with patch('sidekick_core.services.memory_monitor.logger') as mock_logger:
            assert load() == 'ok'

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[1]['memory_delta_mb'] == 50


class TestLifecycle:
    """Test start and stop of periodic sampling."""

    def test_no_thread_until_started(self, monitor):
        assert monitor.is_running is False

    def test_start_and_stop(self, mock_process):
        monitor = MemoryMonitor(
            config=MonitorConfig(monitor_interval_seconds=0.01),
            process=mock_process
        )

        monitor.start()
        try:
            assert monitor.is_running
            deadline = time.time() + 2
            while monitor.get_memory_stats()['samples'] == 0 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            monitor.stop(timeout=2)

        assert monitor.is_running is False
        assert monitor.get_memory_stats()['samples'] >= 1

    def test_start_twice_keeps_one_thread(self, mock_process):
        monitor = MemoryMonitor(config=MonitorConfig(monitor_interval_seconds=10), process=mock_process)

        monitor.start()
        thread = monitor._thread
        monitor.start()

        assert monitor._thread is thread
        monitor.stop(timeout=2)

    def test_get_memory_stats(self, monitor):
        stats = monitor.get_memory_stats()

        assert stats['current']['rss_mb'] == 100
        assert stats['threshold_mb'] == 512
        assert stats['utilization_percent'] == pytest.approx(19.53, abs=0.01)
        assert stats['monitoring'] is False
        assert stats['last_pressure_event'] is None


class TestAudioBuffers:
    """Test the per-instance audio buffer registry."""

    @pytest.fixture
    def buffer_monitor(self, mock_process, clock):
        return MemoryMonitor(
            config=MonitorConfig(buffer_idle_seconds=300),
            process=mock_process,
            clock=clock
        )

    def test_decode_base64_string(self):
        assert decode_audio_buffer(base64.b64encode(b'\x00\x01pcm').decode()) == b'\x00\x01pcm'

    def test_decode_bytes_like(self):
        assert decode_audio_buffer(bytearray(b'abc')) == b'abc'
        assert decode_audio_buffer(memoryview(b'abc')) == b'abc'

    def test_decode_invalid_returns_none(self):
        assert decode_audio_buffer('not base64!') is None
        assert decode_audio_buffer(12.5) is None

    def test_register_and_release(self, buffer_monitor):
        buffer = buffer_monitor.register_buffer('s1', b'audio', metadata={'format': 'pcm'})

        assert buffer_monitor.get_buffer('s1') is buffer
        assert buffer.metadata == {'format': 'pcm'}
        assert buffer_monitor.release_buffer('s1') is True
        assert buffer.data is None
        assert buffer_monitor.get_buffer('s1') is None
        assert buffer_monitor.release_buffer('s1') is False

    def test_register_rejects_undecodable_audio(self, buffer_monitor):
        with pytest.raises(ValueError):
            buffer_monitor.register_buffer('s1', '%%%')

        assert buffer_monitor.get_buffer('s1') is None

    def test_reregister_releases_previous(self, buffer_monitor):
        first = buffer_monitor.register_buffer('s1', b'one')
        buffer_monitor.register_buffer('s1', b'two')

        assert first.data is None
        assert buffer_monitor.get_buffer('s1').data == b'two'

    def test_idle_buffers_released(self, buffer_monitor, clock):
        buffer_monitor.register_buffer('idle', b'a')
        buffer_monitor.register_buffer('busy', b'b')
        clock.advance(200)
        assert buffer_monitor.touch_buffer('busy') is True
        assert buffer_monitor.set_processed_data('busy', {'text': 'start my lineup'}) is True
        clock.advance(150)

        assert buffer_monitor.release_idle_buffers() == 1
        assert buffer_monitor.get_buffer('idle') is None
        assert buffer_monitor.get_buffer('busy').processed_data == {'text': 'start my lineup'}

    def test_unknown_session_updates_return_false(self, buffer_monitor):
        assert buffer_monitor.touch_buffer('nope') is False
        assert buffer_monitor.set_processed_data('nope', 1) is False

    def test_memory_pressure_releases_idle_buffers(self, buffer_monitor, clock):
        buffer_monitor.register_buffer('s1', b'a')
        clock.advance(301)

        results = buffer_monitor.handle_memory_pressure()

        assert results['buffers_released'] == 1

    def test_stats_report_buffers(self, buffer_monitor, clock):
        buffer_monitor.register_buffer('s1', b'abcd')
        clock.advance(2)

        buffers = buffer_monitor.get_memory_stats()['buffers']

        assert buffers['count'] == 1
        assert buffers['total_bytes'] == 4
        assert buffers['sessions'] == [{'session_id': 's1', 'size_bytes': 4, 'idle_seconds': 2}]

    def test_shutdown_stops_sampling_and_releases_buffers(self, mock_process, clock):
        monitor = MemoryMonitor(
            config=MonitorConfig(monitor_interval_seconds=10),
            process=mock_process,
            clock=clock
        )
        buffer = monitor.register_buffer('s1', b'a')
        monitor.register_buffer('s2')
        monitor.start()

        assert monitor.shutdown(timeout=2) == 2
        assert monitor.is_running is False
        assert buffer.data is None
        assert monitor.get_memory_stats()['buffers']['count'] == 0
