"""
Integration tests for CacheManager against a moto DynamoDB table.
"""
import pytest

from sidekick_core.config.settings import CacheConfig
from sidekick_core.services.cache_manager import CacheManager


@pytest.fixture
def cache(cache_repository, clock):
    return CacheManager(repository=cache_repository, config=CacheConfig(), clock=clock)


@pytest.fixture
def other_instance(cache_repository, clock):
    """A second Lambda instance sharing the same table."""
    return CacheManager(repository=cache_repository, config=CacheConfig(), clock=clock)


class TestTTL:
    """Expired entries are never served."""

    def test_short_ttl_entry_expires(self, cache, cache_repository, clock):
        assert cache.set('p:123', {'name': 'Mahomes', 'points': 24.5}, ttl_seconds=1)

        clock.advance(0.5)
        assert cache.get('p:123') == {'name': 'Mahomes', 'points': 24.5}

        clock.advance(0.6)
        assert cache.get('p:123') is None
        assert cache_repository.get_entry('p:123') is None

    def test_expired_entry_not_served_by_other_instance(self, cache, other_instance, clock):
        cache.set('p:123', 'v', ttl_seconds=1)
        clock.advance(2)

        assert other_instance.get('p:123') is None


class TestCacheAside:
    """Writes are visible across instances through DynamoDB."""

    def test_other_instance_reads_durable_copy(self, cache, other_instance, cache_repository):
        cache.set('league:7', {'teams': 12})

        assert other_instance.get('league:7') == {'teams': 12}
        assert other_instance.memory_entries == 1
        assert cache_repository.get_entry('league:7').access_count == 1

    def test_get_or_set_computes_once_across_instances(self, cache, other_instance):
        calls = []

        def supplier():
            calls.append(1)
            return ['p1', 'p2']

        assert cache.get_or_set('roster:u1', supplier) == ['p1', 'p2']
        assert other_instance.get_or_set('roster:u1', supplier) == ['p1', 'p2']
        assert len(calls) == 1

    def test_delete_visible_to_other_instance(self, cache, other_instance):
        cache.set('k', 'v')
        cache.delete('k')

        assert other_instance.get('k') is None

    def test_mutated_values_do_not_diverge_between_instances(self, cache, other_instance):
        roster = {'players': ['a']}
        cache.set('roster', roster)
        roster['players'].append('b')
        cache.get('roster')['players'].append('c')

        assert cache.get('roster') == {'players': ['a']}
        assert other_instance.get('roster') == {'players': ['a']}


class TestTagInvalidation:
    """clear_by_tags reaches entries in both tiers."""

    def test_clear_players_tag(self, cache, other_instance):
        cache.set('p:1', 'a', tags=['players'])
        cache.set('p:2', 'b', tags=['players', 'week-7'])
        cache.set('t:1', 'c', tags=['teams'])

        removed = other_instance.clear_by_tags(['players', 'week-7'])

        assert removed == 2
        assert other_instance.get('p:1') is None
        assert other_instance.get('p:2') is None
        assert other_instance.get('t:1') == 'c'


class TestCleanupAndStats:
    """Periodic cleanup and diagnostics against DynamoDB."""

    def test_cleanup_removes_expired_durable_entries(self, cache, other_instance, cache_repository, clock):
        cache.set('old', 1, ttl_seconds=1)
        cache.set('fresh', 2, ttl_seconds=600)
        clock.advance(5)

        assert other_instance.cleanup() == 1
        assert cache_repository.get_entry('old') is None
        assert cache_repository.get_entry('fresh') is not None

    def test_cleanup_scan_is_bounded(self, cache_repository, monkeypatch, clock):
        """Test that a table full of live entries is not read end to end."""
        config = CacheConfig(cleanup_batch_size=5, cleanup_max_pages=2)
        cache = CacheManager(repository=cache_repository, config=config, clock=clock)
        for i in range(30):
            cache.set(f'live:{i}', i, ttl_seconds=600)
        cache.set('old', 1, ttl_seconds=1)
        clock.advance(5)

        requests = []
        collect_pages = cache_repository.client._collect_pages

        def counting_collect_pages(operation, kwargs, *budget):
            def counted(**request):
                requests.append(request)
                return operation(**request)
            return collect_pages(counted, kwargs, *budget)

        monkeypatch.setattr(cache_repository.client, '_collect_pages', counting_collect_pages)

        assert cache.cleanup() == 1
        assert 1 <= len(requests) <= 2
        assert all(request['Limit'] == 5 for request in requests)
        assert all(cache_repository.get_entry(f'live:{i}') is not None for i in range(30))

    def test_stats_include_durable_tier(self, cache, clock):
        cache.set('a', 'x' * 10)
        cache.set('b', 'y', ttl_seconds=1)
        clock.advance(2)

        stats = cache.get_stats()

        assert stats['durable']['entries'] == 2
        assert stats['durable']['expired_entries'] == 1
        assert stats['memory']['entries'] == 2
