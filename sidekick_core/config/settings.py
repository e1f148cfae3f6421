"""
Configuration data models for the cache, voice sessions and memory monitor.

Each config is a validated dataclass. ``from_env()`` builds one from
environment variables so Lambda functions can be tuned without a redeploy.
"""

import os
from dataclasses import dataclass

MB = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class CacheConfig:
    """
    Configuration for the two-tier cache.

    Attributes:
        default_ttl_seconds: TTL applied when ``set`` gets none (default: 15 min)
        max_cache_size_bytes: Byte budget of the in-process tier (default: 100 MB)
        max_cache_entries: Entry budget of the in-process tier (default: 10000)
        cleanup_interval_seconds: Minimum time between opportunistic cleanups
        cleanup_batch_size: Maximum durable entries removed per cleanup pass
        cleanup_max_pages: Maximum scan pages of cleanup_batch_size items read per pass
        max_entry_fraction: Largest single entry, as a fraction of the byte budget
    """

    default_ttl_seconds: float = 15 * 60
    max_cache_size_bytes: int = 100 * MB
    max_cache_entries: int = 10000
    cleanup_interval_seconds: float = 5 * 60
    cleanup_batch_size: int = 500
    cleanup_max_pages: int = 10
    max_entry_fraction: float = 0.1

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If any parameter is outside its valid range
        """
        if self.default_ttl_seconds <= 0:
            raise ValueError(
                f"default_ttl_seconds must be positive, got {self.default_ttl_seconds}"
            )

        if self.max_cache_size_bytes < 1:
            raise ValueError(
                f"max_cache_size_bytes must be at least 1, got {self.max_cache_size_bytes}"
            )

        if self.max_cache_entries < 1:
            raise ValueError(
                f"max_cache_entries must be at least 1, got {self.max_cache_entries}"
            )

        if self.cleanup_interval_seconds < 0:
            raise ValueError(
                f"cleanup_interval_seconds must be non-negative, "
                f"got {self.cleanup_interval_seconds}"
            )

        if self.cleanup_batch_size < 1:
            raise ValueError(
                f"cleanup_batch_size must be at least 1, got {self.cleanup_batch_size}"
            )

        if self.cleanup_max_pages < 1:
            raise ValueError(
                f"cleanup_max_pages must be at least 1, got {self.cleanup_max_pages}"
            )

        if not 0 < self.max_entry_fraction <= 1:
            raise ValueError(
                f"max_entry_fraction must be in (0, 1], got {self.max_entry_fraction}"
            )

    def __post_init__(self):
        """Validate configuration on initialization."""
        self.validate()

    @property
    def max_entry_size_bytes(self) -> int:
        """Largest serialized payload accepted by ``set``."""
        return int(self.max_cache_size_bytes * self.max_entry_fraction)

    @classmethod
    def from_env(cls) -> 'CacheConfig':
        """Build config from CACHE_* environment variables."""
        return cls(
            default_ttl_seconds=_env_float('CACHE_DEFAULT_TTL_SECONDS', cls.default_ttl_seconds),
            max_cache_size_bytes=_env_int('CACHE_MAX_SIZE_MB', 100) * MB,
            max_cache_entries=_env_int('CACHE_MAX_ENTRIES', cls.max_cache_entries),
            cleanup_interval_seconds=_env_float(
                'CACHE_CLEANUP_INTERVAL_SECONDS', cls.cleanup_interval_seconds
            ),
            cleanup_batch_size=_env_int('CACHE_CLEANUP_BATCH_SIZE', cls.cleanup_batch_size),
            cleanup_max_pages=_env_int('CACHE_CLEANUP_MAX_PAGES', cls.cleanup_max_pages),
        )


@dataclass
class SessionConfig:
    """
    Configuration for voice session management.

    Attributes:
        session_timeout_seconds: Inactivity after which a session expires (default: 5 min)
        processing_timeout_seconds: Age after which a processing lock is stale (default: 30)
        max_concurrent_sessions: Live sessions allowed per user (default: 3)
        burst_limit: Sessions a user may start within the burst window (default: 2)
        burst_window_seconds: Burst window length (default: 60)
        cleanup_batch_size: Maximum sessions reclaimed per sweep (default: 50)
        cleanup_max_pages: Maximum pages of cleanup_batch_size items read per sweep
    """

    session_timeout_seconds: float = 5 * 60
    processing_timeout_seconds: float = 30
    max_concurrent_sessions: int = 3
    burst_limit: int = 2
    burst_window_seconds: float = 60
    cleanup_batch_size: int = 50
    cleanup_max_pages: int = 10

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If any parameter is outside its valid range
        """
        if self.session_timeout_seconds <= 0:
            raise ValueError(
                f"session_timeout_seconds must be positive, "
                f"got {self.session_timeout_seconds}"
            )

        if self.processing_timeout_seconds <= 0:
            raise ValueError(
                f"processing_timeout_seconds must be positive, "
                f"got {self.processing_timeout_seconds}"
            )

        if self.max_concurrent_sessions < 1:
            raise ValueError(
                f"max_concurrent_sessions must be at least 1, "
                f"got {self.max_concurrent_sessions}"
            )

        if self.burst_limit < 1:
            raise ValueError(f"burst_limit must be at least 1, got {self.burst_limit}")

        if self.burst_window_seconds < 0:
            raise ValueError(
                f"burst_window_seconds must be non-negative, got {self.burst_window_seconds}"
            )

        # Deletes plus one counter update per user must fit in one transaction
        if not 1 <= self.cleanup_batch_size <= 50:
            raise ValueError(
                f"cleanup_batch_size must be between 1 and 50, got {self.cleanup_batch_size}"
            )

        if self.cleanup_max_pages < 1:
            raise ValueError(
                f"cleanup_max_pages must be at least 1, got {self.cleanup_max_pages}"
            )

    def __post_init__(self):
        """Validate configuration on initialization."""
        self.validate()

    @classmethod
    def from_env(cls) -> 'SessionConfig':
        """Build config from environment variables."""
        return cls(
            session_timeout_seconds=_env_float(
                'SESSION_TIMEOUT_SECONDS', cls.session_timeout_seconds
            ),
            processing_timeout_seconds=_env_float(
                'PROCESSING_TIMEOUT_SECONDS', cls.processing_timeout_seconds
            ),
            max_concurrent_sessions=_env_int(
                'MAX_CONCURRENT_SESSIONS', cls.max_concurrent_sessions
            ),
            burst_limit=_env_int('SESSION_BURST_LIMIT', cls.burst_limit),
            burst_window_seconds=_env_float(
                'SESSION_BURST_WINDOW_SECONDS', cls.burst_window_seconds
            ),
            cleanup_max_pages=_env_int('SESSION_CLEANUP_MAX_PAGES', cls.cleanup_max_pages),
        )


@dataclass
class MonitorConfig:
    """
    Configuration for the memory monitor.

    Attributes:
        memory_threshold_bytes: RSS above which remediation runs (default: 512 MB)
        monitor_interval_seconds: Sampling interval (default: 30)
        function_delta_threshold_bytes: RSS growth that ``monitor_function`` reports
        gc_hint_ratio: Fraction of the threshold above which a collection is suggested
        metrics_every_n_samples: Publish memory metrics every N samples
        buffer_idle_seconds: Idle time after which a registered audio buffer is released (default: 300)
    """

    memory_threshold_bytes: int = 512 * MB
    monitor_interval_seconds: float = 30
    function_delta_threshold_bytes: int = 10 * MB
    gc_hint_ratio: float = 0.7
    metrics_every_n_samples: int = 10
    buffer_idle_seconds: float = 300

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If any parameter is outside its valid range
        """
        if self.memory_threshold_bytes < 1:
            raise ValueError(
                f"memory_threshold_bytes must be at least 1, "
                f"got {self.memory_threshold_bytes}"
            )

        if self.monitor_interval_seconds <= 0:
            raise ValueError(
                f"monitor_interval_seconds must be positive, "
                f"got {self.monitor_interval_seconds}"
            )

        if not 0 < self.gc_hint_ratio <= 1:
            raise ValueError(f"gc_hint_ratio must be in (0, 1], got {self.gc_hint_ratio}")

        if self.metrics_every_n_samples < 1:
            raise ValueError(
                f"metrics_every_n_samples must be at least 1, "
                f"got {self.metrics_every_n_samples}"
            )

        if self.buffer_idle_seconds <= 0:
            raise ValueError(
                f"buffer_idle_seconds must be positive, got {self.buffer_idle_seconds}"
            )

    def __post_init__(self):
        """Validate configuration on initialization."""
        self.validate()

    @classmethod
    def from_env(cls) -> 'MonitorConfig':
        """Build config from environment variables."""
        return cls(
            memory_threshold_bytes=_env_int('MEMORY_THRESHOLD_MB', 512) * MB,
            monitor_interval_seconds=_env_float(
                'MEMORY_MONITOR_INTERVAL_SECONDS', cls.monitor_interval_seconds
            ),
            buffer_idle_seconds=_env_float('AUDIO_BUFFER_IDLE_SECONDS', cls.buffer_idle_seconds),
        )
