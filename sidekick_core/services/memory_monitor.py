"""
Process Memory Monitor.

Samples the resident memory of the current process with psutil and, above
a threshold, releases memory by dropping idle audio buffers, sweeping expired
voice sessions and expired cache entries, and running a garbage collection.

Audio buffers held while a voice session is being processed are registered
per instance so that memory pressure and shutdown can release them.
"""

import base64
import binascii
import functools
import gc
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import psutil

from ..config.settings import MB, MonitorConfig
from ..utils.metrics import MetricsPublisher
from ..utils.structured_logger import get_structured_logger

logger = get_structured_logger('MemoryMonitor')


@dataclass
class MemoryUsage:
    """
    One memory sample of the current process.

    Attributes:
        rss_bytes: Resident set size
        vms_bytes: Virtual memory size
        timestamp: Sample time in epoch seconds
    """
    rss_bytes: int
    vms_bytes: int
    timestamp: float

    @property
    def rss_mb(self) -> float:
        return self.rss_bytes / MB

    @property
    def vms_mb(self) -> float:
        return self.vms_bytes / MB

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with MB values for logging."""
        return {
            'rss_mb': round(self.rss_mb, 2),
            'vms_mb': round(self.vms_mb, 2),
            'timestamp': self.timestamp
        }


def decode_audio_buffer(audio: Union[str, bytes, bytearray, memoryview]) -> Optional[bytes]:
    """
    Normalize incoming audio to bytes.

    Strings are treated as base64. Returns None when the input cannot be
    decoded so callers can reject the chunk without a stack trace.
    """
    try:
        if isinstance(audio, str):
            return base64.b64decode(audio, validate=True)
        return bytes(audio)
    except (binascii.Error, TypeError, ValueError) as e:
        logger.warning("Could not decode audio buffer", operation='decode_audio_buffer', error_message=str(e))
        return None


@dataclass
class AudioBuffer:
    """Audio and intermediate results held for one voice session on this instance."""
    session_id: str
    data: Optional[bytes]
    created_at: float
    last_activity: float
    processed_data: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def size_bytes(self) -> int:
        return len(self.data) if self.data else 0

    def release(self) -> None:
        self.data = None
        self.processed_data = None


class MemoryMonitor:
    """
    Periodic memory sampler with best-effort remediation.

    The monitor does nothing until ``start()`` is called; sampling then runs
    on a daemon thread until ``stop()``.
    """

    def __init__(
        self,
        cache_manager=None,
        session_manager=None,
        config: Optional[MonitorConfig] = None,
        metrics_publisher: Optional[MetricsPublisher] = None,
        process: Optional[psutil.Process] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize Memory Monitor.

        Args:
            cache_manager: CacheManager whose ``cleanup`` runs under pressure
            session_manager: VoiceSessionManager whose expiry sweep runs under pressure
            config: Monitor configuration (defaults to MonitorConfig.from_env())
            metrics_publisher: Optional CloudWatch publisher
            process: psutil process to sample (defaults to the current process)
            clock: Time source in epoch seconds for buffer idle tracking
        """
        self.cache_manager = cache_manager
        self.session_manager = session_manager
        self.config = config or MonitorConfig.from_env()
        self.metrics_publisher = metrics_publisher
        self.process = process or psutil.Process()
        self.clock = clock or time.time

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sample_count = 0
        self._last_usage: Optional[MemoryUsage] = None
        self._last_pressure_event: Optional[Dict[str, Any]] = None
        self._buffers: Dict[str, AudioBuffer] = {}
        self._buffers_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start periodic sampling. Calling start on a running monitor is a no-op."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._monitor_loop,
            name='memory-monitor',
            daemon=True
        )
        self._thread.start()
        logger.info(
            f"Memory monitoring started (interval: {self.config.monitor_interval_seconds}s)",
            operation='start',
            threshold_mb=self.config.memory_threshold_bytes / MB
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop periodic sampling and wait for the sampling thread.

        Args:
            timeout: Maximum seconds to wait for the thread to exit
        """
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Memory monitoring stopped", operation='stop')

    def shutdown(self, timeout: Optional[float] = None) -> int:
        """
        Stop sampling and release every registered audio buffer.

        Returns:
            Number of buffers released
        """
        self.stop(timeout)
        with self._buffers_lock:
            buffers = list(self._buffers.values())
            self._buffers.clear()
        for buffer in buffers:
            buffer.release()

        logger.info("Memory monitor shut down", operation='shutdown', buffers_released=len(buffers))
        return len(buffers)

    def register_buffer(
        self,
        session_id: str,
        audio: Union[str, bytes, bytearray, memoryview, None] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AudioBuffer:
        """
        Hold audio for a session on this instance.

        Registering a session again replaces and releases its previous buffer.

        Raises:
            ValueError: If ``audio`` is given but cannot be decoded
        """
        data = None
        if audio is not None:
            data = decode_audio_buffer(audio)
            if data is None:
                raise ValueError(f"Audio for session {session_id} could not be decoded")

        now = self.clock()
        buffer = AudioBuffer(
            session_id=session_id,
            data=data,
            created_at=now,
            last_activity=now,
            metadata=dict(metadata or {})
        )
        with self._buffers_lock:
            previous = self._buffers.get(session_id)
            self._buffers[session_id] = buffer
        if previous is not None:
            previous.release()

        logger.debug(
            "Audio buffer registered",
            operation='register_buffer',
            session_id=session_id,
            size_bytes=buffer.size_bytes
        )
        return buffer

    def get_buffer(self, session_id: str) -> Optional[AudioBuffer]:
        with self._buffers_lock:
            return self._buffers.get(session_id)

    def touch_buffer(self, session_id: str) -> bool:
        """Mark a buffer as in use. Returns False for unknown sessions."""
        with self._buffers_lock:
            buffer = self._buffers.get(session_id)
            if buffer is None:
                return False
            buffer.last_activity = self.clock()
            return True

    def set_processed_data(self, session_id: str, processed_data: Any) -> bool:
        """Attach intermediate results to a buffer. Returns False for unknown sessions."""
        with self._buffers_lock:
            buffer = self._buffers.get(session_id)
            if buffer is None:
                return False
            buffer.processed_data = processed_data
            buffer.last_activity = self.clock()
            return True

    def release_buffer(self, session_id: str) -> bool:
        """
        Drop the buffer held for a session.

        Returns:
            True if a buffer was registered for the session
        """
        with self._buffers_lock:
            buffer = self._buffers.pop(session_id, None)
        if buffer is None:
            return False

        buffer.release()
        logger.debug("Audio buffer released", operation='release_buffer', session_id=session_id)
        return True

    def release_idle_buffers(self) -> int:
        """
        Release buffers idle for longer than config.buffer_idle_seconds.

        Returns:
            Number of buffers released
        """
        cutoff = self.clock() - self.config.buffer_idle_seconds
        with self._buffers_lock:
            idle = [
                session_id for session_id, buffer in self._buffers.items()
                if buffer.last_activity < cutoff
            ]
            released: List[AudioBuffer] = [self._buffers.pop(session_id) for session_id in idle]
        for buffer in released:
            buffer.release()

        if released:
            logger.info(
                f"Released {len(released)} idle audio buffers",
                operation='release_idle_buffers',
                session_ids=idle
            )
        return len(released)

    def _monitor_loop(self) -> None:
        while not self._stop_event.wait(self.config.monitor_interval_seconds):
            try:
                self.check_memory()
            except Exception as e:
                # Keep sampling after a failed sample
                logger.error("Memory check failed", operation='monitor_loop', error=e)

    def sample(self) -> MemoryUsage:
        """Read the current memory usage of the process."""
        info = self.process.memory_info()
        usage = MemoryUsage(rss_bytes=info.rss, vms_bytes=info.vms, timestamp=time.time())
        self._last_usage = usage
        return usage

    def check_memory(self) -> MemoryUsage:
        """
        Sample memory and remediate when over the threshold.

        Returns:
            The sample taken before any remediation
        """
        usage = self.sample()
        self._sample_count += 1

        logger.debug("Memory sample", operation='check_memory', **usage.to_dict())

        if usage.rss_bytes > self.config.memory_threshold_bytes:
            logger.warning(
                f"High memory usage detected: {usage.rss_mb:.2f}MB",
                operation='check_memory',
                threshold_mb=self.config.memory_threshold_bytes / MB
            )
            self.handle_memory_pressure()

        if self.metrics_publisher and self._sample_count % self.config.metrics_every_n_samples == 0:
            self.metrics_publisher.emit_memory_usage(
                usage.rss_mb, self.config.memory_threshold_bytes / MB
            )

        return usage

    def handle_memory_pressure(self) -> Dict[str, Any]:
        """
        Release memory: drop idle buffers, sweep expired sessions, clean the cache
        and collect garbage.

        Each step runs even if the one before it failed.

        Returns:
            Per-step results plus the RSS change in MB (negative means freed)
        """
        before = self.sample()
        results: Dict[str, Any] = {}

        results['buffers_released'] = self._run_step('buffer_release', self.release_idle_buffers)

        if self.session_manager is not None:
            results['sessions_cleaned'] = self._run_step(
                'session_cleanup', self.session_manager.cleanup_expired_sessions
            )

        if self.cache_manager is not None:
            results['cache_entries_cleaned'] = self._run_step(
                'cache_cleanup', self.cache_manager.cleanup
            )

        results['objects_collected'] = self._run_step('garbage_collection', gc.collect)

        after = self.sample()
        freed_mb = (before.rss_bytes - after.rss_bytes) / MB
        results['memory_delta_mb'] = round(-freed_mb, 2)

        logger.info(
            f"Memory cleanup completed. Freed: {freed_mb:.2f}MB",
            operation='handle_memory_pressure',
            before=before.to_dict(),
            after=after.to_dict(),
            results=results
        )

        self._last_pressure_event = {'timestamp': after.timestamp, **results}
        if self.metrics_publisher:
            self.metrics_publisher.emit_memory_pressure(freed_mb)
        return results

    def _run_step(self, name: str, step: Callable[[], Any]) -> Any:
        try:
            return step()
        except Exception as e:
            logger.error(f"Memory cleanup step {name} failed", operation='handle_memory_pressure', error=e)
            return None

    def suggest_garbage_collection(self) -> bool:
        """
        Collect garbage when RSS is above the hint ratio of the threshold.

        Returns:
            True if a collection was run
        """
        usage = self.sample()
        if usage.rss_bytes <= self.config.memory_threshold_bytes * self.config.gc_hint_ratio:
            return False

        collected = gc.collect()
        logger.info(
            "Garbage collection suggested by memory usage",
            operation='suggest_garbage_collection',
            rss_mb=round(usage.rss_mb, 2),
            objects_collected=collected
        )
        return True

    def monitor_function(
        self,
        name: str,
        threshold_bytes: Optional[int] = None
    ) -> Callable:
        """
        Decorator reporting memory growth and duration of a function.

        The wrapped function's result and exceptions are passed through
        unchanged.

        Args:
            name: Name used in log entries
            threshold_bytes: RSS growth above which a warning is logged
                (defaults to config.function_delta_threshold_bytes)

        Example:
            >>> @monitor.monitor_function('transcribe')
            ... def transcribe(audio): ...
        """
        threshold = (
            self.config.function_delta_threshold_bytes
            if threshold_bytes is None else threshold_bytes
        )

        def decorator(func):
            @functools.wraps(func)
            def wrapper(*args, **kwargs):
                start_rss = self.process.memory_info().rss
                start_time = time.time()

                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    logger.error(
                        f"Function {name} failed",
                        operation='monitor_function',
                        error=e,
                        duration_ms=(time.time() - start_time) * 1000
                    )
                    raise

                delta = self.process.memory_info().rss - start_rss
                duration_ms = (time.time() - start_time) * 1000

                if delta > threshold:
                    logger.warning(
                        f"Function {name} used {delta / MB:.2f}MB",
                        operation='monitor_function',
                        memory_delta_mb=round(delta / MB, 2),
                        duration_ms=duration_ms
                    )
                return result

            return wrapper

        return decorator

    def get_memory_stats(self) -> Dict[str, Any]:
        """
        Get current usage, thresholds, held buffers and the last pressure event.

        Returns:
            Dictionary of memory statistics
        """
        usage = self.sample()
        threshold_mb = self.config.memory_threshold_bytes / MB
        with self._buffers_lock:
            buffers = [
                {
                    'session_id': buffer.session_id,
                    'size_bytes': buffer.size_bytes,
                    'idle_seconds': round(self.clock() - buffer.last_activity, 3)
                }
                for buffer in self._buffers.values()
            ]

        return {
            'current': usage.to_dict(),
            'threshold_mb': threshold_mb,
            'utilization_percent': round(usage.rss_mb / threshold_mb * 100, 2),
            'gc_hint_mb': threshold_mb * self.config.gc_hint_ratio,
            'samples': self._sample_count,
            'monitoring': self.is_running,
            'buffers': {
                'count': len(buffers),
                'total_bytes': sum(buffer['size_bytes'] for buffer in buffers),
                'idle_timeout_seconds': self.config.buffer_idle_seconds,
                'sessions': buffers
            },
            'last_pressure_event': self._last_pressure_event
        }
