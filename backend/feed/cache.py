"""
Cache of assembled views.

Entries are keyed by view descriptor (``feed:global``, ``feed:user:<id>``,
``feed:following``, ``post:<id>``, ``comments:<id>``). An index from post id
to the keys holding that post lets a mutation patch a post once and have it
reflected in every cached view.

There is no TTL. An entry stays valid until a mutation invalidates it or
the caller forces a refetch.

Stale-response guard:
- ``begin()`` hands out a monotonically increasing request token per key.
- ``activate()`` (navigation) abandons in-flight fetches of every other
  view and evicts their entries, so a later read fetches again.
- ``commit()`` only writes if the token is still the live one for its key,
  and nothing patched the view or its posts while the fetch was in flight.
"""
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field

from .viewmodels import ViewDescriptor

logger = logging.getLogger(__name__)

WRITTEN = 'written'
STALE = 'stale'
CONFLICT = 'conflict'


@dataclass
class _InFlight:
    token: int
    dirty_posts: set = field(default_factory=set)
    touched: bool = False


class FeedCache:

    def __init__(self):
        self._entries = {}
        self._holders = defaultdict(set)
        self._in_flight = {}
        self._tokens = itertools.count(1)
        self.active = None

    def get(self, descriptor):
        entry = self._entries.get(descriptor.key)
        return list(entry) if entry is not None else None

    def __contains__(self, descriptor):
        return descriptor.key in self._entries

    def keys(self):
        return sorted(self._entries)

    def keys_holding(self, post_id):
        return sorted(self._holders.get(post_id, ()))

    def clear(self):
        self._entries.clear()
        self._holders.clear()
        self._in_flight.clear()
        self.active = None

    # Write path

    def activate(self, descriptor):
        self.active = descriptor
        for key in list(self._in_flight):
            if key != descriptor.key:
                del self._in_flight[key]
                self._evict(key)
                logger.info('Abandoned in-flight fetch of %s', key)

    def begin(self, descriptor):
        token = next(self._tokens)
        self._in_flight[descriptor.key] = _InFlight(token)
        return token

    def cancel(self, descriptor, token):
        in_flight = self._in_flight.get(descriptor.key)
        if in_flight is not None and in_flight.token == token:
            del self._in_flight[descriptor.key]

    def commit(self, descriptor, token, items):
        """Write a fetched view. Returns WRITTEN, STALE or CONFLICT."""
        key = descriptor.key
        in_flight = self._in_flight.get(key)
        if in_flight is None or in_flight.token != token:
            logger.info('Discarding stale response for %s (request %s)', key, token)
            return STALE
        del self._in_flight[key]
        ids = {item.id for item in items} if descriptor.holds_posts else set()
        if in_flight.touched or in_flight.dirty_posts & ids:
            logger.info('Not caching %s: view changed while in flight', key)
            self._evict(key)
            return CONFLICT
        self._write(key, items, descriptor.holds_posts)
        return WRITTEN

    def put(self, descriptor, items):
        self._write(descriptor.key, items, descriptor.holds_posts)

    def invalidate(self, descriptor):
        in_flight = self._in_flight.get(descriptor.key)
        if in_flight is not None:
            in_flight.touched = True
        self._evict(descriptor.key)

    def _write(self, key, items, holds_posts):
        self._evict(key)
        self._entries[key] = list(items)
        if holds_posts:
            for item in items:
                self._holders[item.id].add(key)

    def _evict(self, key):
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for item in entry:
            holders = self._holders.get(getattr(item, 'id', None))
            if holders is not None:
                holders.discard(key)
                if not holders:
                    del self._holders[item.id]

    def _mark(self, key=None, post_id=None):
        for in_flight_key, in_flight in self._in_flight.items():
            if post_id is not None:
                in_flight.dirty_posts.add(post_id)
            if key is not None and in_flight_key == key:
                in_flight.touched = True

    # Patch path

    def patch_post(self, post_id, update):
        """Replace post ``post_id`` with ``update(post)`` in every entry holding it."""
        self._mark(post_id=post_id)
        keys = self.keys_holding(post_id)
        for key in keys:
            self._entries[key] = [
                update(item) if item.id == post_id else item
                for item in self._entries[key]
            ]
        return len(keys)

    def prepend(self, descriptor, post):
        """Put ``post`` at the head of a cached post view. No-op if not cached."""
        key = descriptor.key
        self._mark(key=key)
        entry = self._entries.get(key)
        if entry is None:
            return False
        self._entries[key] = [post] + [item for item in entry if item.id != post.id]
        self._holders[post.id].add(key)
        return True

    def append_comment(self, comment):
        key = ViewDescriptor.post_comments(comment.post_id).key
        self._mark(key=key)
        entry = self._entries.get(key)
        if entry is None:
            return False
        if all(item.id != comment.id for item in entry):
            self._entries[key] = entry + [comment]
        return True

    def remove_post(self, post_id):
        """Drop a deleted post from every list and forget its own views."""
        self._mark(post_id=post_id)
        for key in self.keys_holding(post_id):
            self._entries[key] = [item for item in self._entries[key] if item.id != post_id]
        self._holders.pop(post_id, None)
        for descriptor in (ViewDescriptor.single_post(post_id), ViewDescriptor.post_comments(post_id)):
            self.invalidate(descriptor)
