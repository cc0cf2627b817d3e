"""
Tests for the contact form cooldown store and its set backends.
"""
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from django.test import RequestFactory
from redis.exceptions import ConnectionError as RedisConnectionError

from contact.backends import MemoryIdentitySet, RedisIdentitySet, get_identity_set
from contact.exceptions import StoreUnavailable
from contact.rate_limiting import (
    Identity,
    Sentinel,
    get_client_ip,
    get_cooldown_store,
    parse_member,
)

WINDOW_MS = 7200 * 1000


class TestParseMember:
    """Sentinels are told apart from client addresses by shape alone."""

    @pytest.mark.parametrize('member', ['1700000000000', '0', '42'])
    def test_digit_strings_are_sentinels(self, member):
        assert parse_member(member) == Sentinel(int(member))

    @pytest.mark.parametrize('member', [
        '1.2.3.4', '::1', '2001:db8::1', '-5', '12.5', '', ' 123', '1e9',
    ])
    def test_everything_else_is_an_identity(self, member):
        assert parse_member(member) == Identity(member)


class TestEnsureSentinel:

    def test_empty_snapshot_starts_window(self, store, identity_set, clock):
        store.ensure_sentinel(frozenset())

        assert identity_set.members() == {str(clock.now + WINDOW_MS)}

    def test_non_empty_snapshot_is_left_alone(self, store, identity_set):
        identity_set.add('1.2.3.4')

        store.ensure_sentinel(frozenset({'1.2.3.4'}))

        assert identity_set.members() == {'1.2.3.4'}

    def test_concurrent_starts_collapse_to_one_sentinel(self, store, identity_set, clock):
        """Two requests that both saw an empty set write the same member."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            list(pool.map(store.ensure_sentinel, [frozenset(), frozenset()]))

        members = identity_set.members()
        assert members == {str(clock.now + WINDOW_MS)}
        assert store.sentinels(members) == [Sentinel(clock.now + WINDOW_MS)]


class TestResetIfExpired:

    def test_stale_sentinel_clears_whole_batch(self, store, identity_set, clock):
        identity_set.add(str(clock.now - 1), '1.2.3.4')

        assert store.reset_if_expired(store.snapshot()) is True
        assert identity_set.members() == set()

    def test_live_sentinel_keeps_batch(self, store, identity_set, clock):
        identity_set.add(str(clock.now + 1000), '1.2.3.4')

        assert store.reset_if_expired(store.snapshot()) is False
        assert '1.2.3.4' in identity_set.members()

    def test_sentinel_equal_to_now_is_not_stale(self, store, identity_set, clock):
        identity_set.add(str(clock.now), '1.2.3.4')

        assert store.reset_if_expired(store.snapshot()) is False

    def test_empty_set_is_noop(self, store):
        assert store.reset_if_expired(frozenset()) is False

    def test_window_expires_after_clock_passes_it(self, store, identity_set, clock):
        store.ensure_sentinel(frozenset())
        identity_set.add('1.2.3.4')

        clock.advance(7200)
        assert store.reset_if_expired(store.snapshot()) is False

        clock.advance(1)
        assert store.reset_if_expired(store.snapshot()) is True
        assert identity_set.members() == set()


class TestPrepare:

    def test_first_request_opens_window(self, store, identity_set, clock):
        snapshot = store.prepare()

        assert snapshot == frozenset()
        assert identity_set.members() == {str(clock.now + WINDOW_MS)}

    def test_expired_batch_is_replaced_by_fresh_window(self, store, identity_set, clock):
        identity_set.add(str(clock.now - 1), '1.2.3.4')

        snapshot = store.prepare()

        assert snapshot == frozenset()
        assert identity_set.members() == {str(clock.now + WINDOW_MS)}

    def test_open_window_returns_current_members(self, store, identity_set, clock):
        sentinel = str(clock.now + 60_000)
        identity_set.add(sentinel, '1.2.3.4')

        snapshot = store.prepare()

        assert snapshot == frozenset({sentinel, '1.2.3.4'})
        assert identity_set.members() == {sentinel, '1.2.3.4'}

    def test_clients_without_window_get_one(self, store, identity_set, clock):
        identity_set.add('1.2.3.4')

        snapshot = store.prepare()

        assert snapshot == frozenset({'1.2.3.4', str(clock.now + WINDOW_MS)})
        assert identity_set.members() == snapshot
        assert store.is_cooling_down(snapshot, '1.2.3.4')
        assert store.retry_after(snapshot) == 7200

    def test_clear_between_prepare_and_track_does_not_lock_out(self, store, identity_set, clock):
        store.prepare()
        store.clear()
        store.track('1.2.3.4')

        clock.advance(60)
        assert store.is_cooling_down(store.prepare(), '1.2.3.4')

        clock.advance(30 * 24 * 3600)
        snapshot = store.prepare()

        assert not store.is_cooling_down(snapshot, '1.2.3.4')
        assert identity_set.members() == {str(clock.now + WINDOW_MS)}



class TestCooldownChecks:

    def test_tracked_identity_is_cooling_down(self, store):
        store.prepare()
        store.track('1.2.3.4')

        snapshot = store.snapshot()
        assert store.is_cooling_down(snapshot, '1.2.3.4')
        assert not store.is_cooling_down(snapshot, '5.6.7.8')

    def test_track_is_idempotent(self, store, identity_set):
        store.track('1.2.3.4')
        store.track('1.2.3.4')

        assert identity_set.members() == {'1.2.3.4'}

    def test_identities_excludes_sentinels(self, store, clock):
        snapshot = frozenset({str(clock.now), '5.6.7.8', '1.2.3.4'})

        assert store.identities(snapshot) == ['1.2.3.4', '5.6.7.8']

    def test_retry_after_rounds_up_to_seconds(self, store, clock):
        snapshot = frozenset({str(clock.now + 5500), '1.2.3.4'})

        assert store.retry_after(snapshot) == 6

    def test_retry_after_without_live_window(self, store, clock):
        assert store.retry_after(frozenset({'1.2.3.4'})) is None
        assert store.retry_after(frozenset({str(clock.now - 1)})) is None

    def test_store_from_settings(self, settings):
        settings.CONTACT_COOLDOWN_WINDOW_SECONDS = 60

        store = get_cooldown_store()

        assert store.window_ms == 60_000
        assert isinstance(store.backend, MemoryIdentitySet)


class TestMemoryIdentitySet:

    def test_instances_with_same_key_share_members(self):
        MemoryIdentitySet('clients').add('1.2.3.4')

        assert MemoryIdentitySet('clients').members() == {'1.2.3.4'}
        assert MemoryIdentitySet('other').members() == set()

    def test_members_returns_a_copy(self):
        backend = MemoryIdentitySet('clients')
        backend.add('1.2.3.4')

        backend.members().add('5.6.7.8')

        assert backend.members() == {'1.2.3.4'}

    def test_clear(self):
        backend = MemoryIdentitySet('clients')
        backend.add('1.2.3.4', '5.6.7.8')

        backend.clear()

        assert backend.members() == set()


class TestRedisIdentitySet:

    @pytest.fixture
    def connection(self):
        return MagicMock()

    @pytest.fixture
    def backend(self, connection):
        return RedisIdentitySet('mail-clients', connection=connection)

    def test_members_decodes_bytes(self, backend, connection):
        connection.smembers.return_value = {b'1.2.3.4', b'1700000000000'}

        assert backend.members() == {'1.2.3.4', '1700000000000'}
        connection.smembers.assert_called_once_with('mail-clients')

    def test_add_uses_sadd(self, backend, connection):
        backend.add('1.2.3.4')

        connection.sadd.assert_called_once_with('mail-clients', '1.2.3.4')

    def test_add_nothing_skips_round_trip(self, backend, connection):
        backend.add()

        connection.sadd.assert_not_called()

    def test_clear_deletes_key(self, backend, connection):
        backend.clear()

        connection.delete.assert_called_once_with('mail-clients')

    @pytest.mark.parametrize('operation, command', [
        (lambda b: b.members(), 'smembers'),
        (lambda b: b.add('1.2.3.4'), 'sadd'),
        (lambda b: b.clear(), 'delete'),
    ])
    def test_redis_errors_become_store_unavailable(self, backend, connection, operation, command):
        getattr(connection, command).side_effect = RedisConnectionError('connection refused')

        with pytest.raises(StoreUnavailable):
            operation(backend)


class TestGetIdentitySet:

    def test_memory_backend(self, settings):
        settings.CONTACT_COOLDOWN_STORE = 'memory'

        backend = get_identity_set()

        assert isinstance(backend, MemoryIdentitySet)
        assert backend.key == settings.CONTACT_COOLDOWN_KEY

    def test_redis_backend_connects_lazily(self, settings):
        settings.CONTACT_COOLDOWN_STORE = 'redis'
        settings.CONTACT_COOLDOWN_KEY = 'mail-clients'

        backend = get_identity_set()

        assert isinstance(backend, RedisIdentitySet)
        assert backend.key == 'mail-clients'
        assert backend._connection is None

    def test_unknown_backend(self, settings):
        settings.CONTACT_COOLDOWN_STORE = 'memcached'

        with pytest.raises(ValueError):
            get_identity_set()


class TestGetClientIp:

    @pytest.fixture
    def factory(self):
        return RequestFactory()

    def test_prefers_forwarded_header(self, factory):
        request = factory.post('/', HTTP_X_FORWARDED_FOR='203.0.113.9, 10.0.0.1', REMOTE_ADDR='10.0.0.2')

        assert get_client_ip(request) == '203.0.113.9'

    def test_falls_back_to_remote_addr(self, factory):
        request = factory.post('/', REMOTE_ADDR='10.0.0.2')

        assert get_client_ip(request) == '10.0.0.2'
