"""
Identity Set Backends

Storage for the contact form cooldown set. The set lives outside the
process so every worker sees the same cooldown state. Backends only know
how to list, add to and empty one named set.
"""
import logging
import threading

from django.conf import settings
from redis.exceptions import RedisError

from .exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


class IdentitySetBackend:
    """Capability interface for a named, shared set of strings."""

    def __init__(self, key):
        self.key = key

    def members(self):
        raise NotImplementedError

    def add(self, *values):
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


class RedisIdentitySet(IdentitySetBackend):
    """
    Redis set (SMEMBERS / SADD / DEL) on the django-redis connection.

    SADD is a set union, so concurrent writers of the same member collapse
    into one entry.
    """

    def __init__(self, key, alias='default', connection=None):
        super().__init__(key)
        self.alias = alias
        self._connection = connection

    @property
    def connection(self):
        if self._connection is None:
            from django_redis import get_redis_connection
            self._connection = get_redis_connection(self.alias)
        return self._connection

    def members(self):
        try:
            raw = self.connection.smembers(self.key)
        except RedisError as e:
            logger.error(f"Failed to read cooldown set '{self.key}': {e}")
            raise StoreUnavailable() from e
        return {
            member.decode('utf-8') if isinstance(member, bytes) else member
            for member in raw
        }

    def add(self, *values):
        if not values:
            return
        try:
            self.connection.sadd(self.key, *values)
        except RedisError as e:
            logger.error(f"Failed to add to cooldown set '{self.key}': {e}")
            raise StoreUnavailable() from e

    def clear(self):
        try:
            self.connection.delete(self.key)
        except RedisError as e:
            logger.error(f"Failed to clear cooldown set '{self.key}': {e}")
            raise StoreUnavailable() from e


class MemoryIdentitySet(IdentitySetBackend):
    """
    Process-wide in-memory set for development and tests.

    Sets are shared between instances with the same key, like the Redis
    backend, but not between worker processes.
    """

    _sets = {}
    _lock = threading.Lock()

    def members(self):
        with self._lock:
            return set(self._sets.get(self.key, ()))

    def add(self, *values):
        with self._lock:
            self._sets.setdefault(self.key, set()).update(values)

    def clear(self):
        with self._lock:
            self._sets.pop(self.key, None)

    @classmethod
    def reset_all(cls):
        with cls._lock:
            cls._sets.clear()


BACKENDS = {
    'redis': RedisIdentitySet,
    'memory': MemoryIdentitySet,
}


def get_identity_set(key=None):
    """Build the backend selected by CONTACT_COOLDOWN_STORE."""
    name = getattr(settings, 'CONTACT_COOLDOWN_STORE', 'memory')
    key = key or getattr(settings, 'CONTACT_COOLDOWN_KEY', 'mail-clients')

    try:
        backend_class = BACKENDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown CONTACT_COOLDOWN_STORE '{name}'. "
            f"Choose one of: {', '.join(sorted(BACKENDS))}"
        )

    return backend_class(key)
