"""
Rate Limiting Utilities for Contact Form

One submission per client address per cooldown window.

The backing set store has no per-member expiry, so the set carries one
extra "sentinel" member: a Unix timestamp in milliseconds marking when the
current batch ends. The first request that sees a past sentinel empties the
whole set, and every address recorded during that window is released
together.
"""
import logging
import math
import re
import time
from collections import namedtuple

from django.conf import settings

from .backends import get_identity_set

logger = logging.getLogger(__name__)

_SENTINEL_RE = re.compile(r'[0-9]+')

Sentinel = namedtuple('Sentinel', ['expires_at'])
Identity = namedtuple('Identity', ['value'])


def parse_member(member):
    """Classify a raw set member as a Sentinel or an Identity."""
    if _SENTINEL_RE.fullmatch(member):
        return Sentinel(int(member))
    return Identity(member)


def now_ms():
    return int(time.time() * 1000)


def get_client_ip(request):
    """Get client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or ''


class CooldownStore:
    """
    Client-identity cooldown tracker on top of an identity set backend.

    Usage:
        store = CooldownStore(get_identity_set(), window_seconds=7200)
        snapshot = store.prepare()
        if store.is_cooling_down(snapshot, ip):
            ...
        store.track(ip)
    """

    def __init__(self, backend, window_seconds, clock=now_ms):
        self.backend = backend
        self.window_ms = int(window_seconds * 1000)
        self.clock = clock

    def snapshot(self):
        """Current members of the set. May be stale under concurrent writes."""
        return frozenset(self.backend.members())

    def track(self, identity):
        self.backend.add(identity)

    def clear(self):
        self.backend.clear()

    def sentinels(self, snapshot):
        return [
            entry for entry in map(parse_member, snapshot)
            if isinstance(entry, Sentinel)
        ]

    def identities(self, snapshot):
        return sorted(
            entry.value for entry in map(parse_member, snapshot)
            if isinstance(entry, Identity)
        )

    def reset_if_expired(self, snapshot):
        """
        Clear the set if the snapshot holds a sentinel in the past.

        Returns:
            bool: True if the batch was cleared
        """
        now = self.clock()
        stale = [s for s in self.sentinels(snapshot) if s.expires_at < now]
        if not stale:
            return False

        self.backend.clear()
        logger.info(
            f"Cooldown batch expired at {min(s.expires_at for s in stale)}; "
            f"released {len(self.identities(snapshot))} tracked client(s)"
        )
        return True

    def start_window(self):
        """Insert a sentinel for a window starting now; returns its deadline."""
        expires_at = self.clock() + self.window_ms
        self.backend.add(str(expires_at))
        return expires_at

    def ensure_sentinel(self, snapshot):
        """Start a new window if the snapshot is empty."""
        if snapshot:
            return
        expires_at = self.start_window()
        logger.debug(f"Started cooldown window ending at {expires_at}")

    def prepare(self):
        """
        Load cooldown state, expire a stale batch and make sure a window is open.

        Tracked clients with no sentinel beside them (the set was cleared
        between another request's prepare() and track(), or its sentinel
        write failed) get a fresh window too, so the set can expire again.

        Returns:
            frozenset: Membership as it stands before this request's identity
            is recorded. Empty when the previous batch was just released.
        """
        snapshot = self.snapshot()
        if self.reset_if_expired(snapshot):
            snapshot = frozenset()

        if snapshot and not self.sentinels(snapshot):
            expires_at = self.start_window()
            logger.warning(
                f"Cooldown set had {len(self.identities(snapshot))} tracked client(s) "
                f"without a window; started window ending at {expires_at}"
            )
            snapshot = snapshot | {str(expires_at)}
        else:
            self.ensure_sentinel(snapshot)
        return snapshot

    def is_cooling_down(self, snapshot, identity):
        return identity in snapshot

    def retry_after(self, snapshot):
        """Seconds until the live window in the snapshot ends, or None."""
        now = self.clock()
        live = [s.expires_at for s in self.sentinels(snapshot) if s.expires_at >= now]
        if not live:
            return None
        return math.ceil((min(live) - now) / 1000)


def get_cooldown_store():
    """Build the cooldown store from settings."""
    return CooldownStore(
        get_identity_set(),
        window_seconds=getattr(settings, 'CONTACT_COOLDOWN_WINDOW_SECONDS', 60 * 60 * 2),
    )
