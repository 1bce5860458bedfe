"""
Shared helpers for the feed tests: seeded in-memory stores and store
subclasses that inject failures, races and delays.
"""
import asyncio
from datetime import timedelta

from django.utils import timezone

from feed.client import FeedClient
from feed.memory import InMemoryStore
from feed.notifications import MessageBuffer
from feed.session import StaticSession, Viewer
from feed.store import StoreError, UniqueViolation

ALICE = Viewer(id=1, username='alice', avatar='https://example.com/alice.png')
BOB = Viewer(id=2, username='bob')
CAROL = Viewer(id=3, username='carol')


def seeded_store(store_class=InMemoryStore, **kwargs):
    store = store_class(**kwargs)
    for viewer in (ALICE, BOB, CAROL):
        store.add_profile(viewer.id, viewer.username, viewer.avatar)
    return store


async def seed_post(store, user_id, description, minutes_ago=0, **extra):
    values = {
        'user_id': user_id,
        'description': description,
        'content': None,
        'code': None,
        'media': None,
        'created_at': timezone.now() - timedelta(minutes=minutes_ago),
        'updated_at': timezone.now(),
    }
    values.update(extra)
    return (await store.insert('posts', values))['id']


def make_client(store, viewer=ALICE):
    return FeedClient(store, StaticSession(viewer), MessageBuffer())


class FlakyStore(InMemoryStore):
    """Fails the next ``times`` calls of ``op`` on ``relation``."""

    def __init__(self):
        super().__init__()
        self.failures = {}

    def fail(self, op, relation, times=1, error=None):
        self.failures[(op, relation)] = [times, error or StoreError('store unavailable', relation)]

    def _maybe_fail(self, op, relation):
        failure = self.failures.get((op, relation))
        if failure and failure[0] > 0:
            failure[0] -= 1
            raise failure[1]

    async def select(self, relation, where=None, order_by=(), limit=None):
        self._maybe_fail('select', relation)
        return await super().select(relation, where, order_by, limit)

    async def count(self, relation, where=None):
        self._maybe_fail('count', relation)
        return await super().count(relation, where)

    async def insert(self, relation, values):
        self._maybe_fail('insert', relation)
        return await super().insert(relation, values)

    async def delete(self, relation, where):
        self._maybe_fail('delete', relation)
        return await super().delete(relation, where)


class RacingTagStore(InMemoryStore):
    """
    Another client creates tag ``racing`` between our lookup and our insert.

    With ``vanish=True`` the competing row is invisible to us afterwards,
    so the tag can never be resolved.
    """

    def __init__(self, racing, vanish=False):
        super().__init__()
        self.racing = racing
        self.vanish = vanish
        self.tag_inserts = 0

    async def insert(self, relation, values):
        if relation == 'tags' and values.get('name') == self.racing:
            self.tag_inserts += 1
            if not self.vanish:
                await super().insert('tags', values)
            raise UniqueViolation(f"duplicate tag {values['name']}", 'tags')
        return await super().insert(relation, values)


class GatedStore(InMemoryStore):
    """Post reads for a user feed wait until that user's gate is opened."""

    def __init__(self):
        super().__init__()
        self.gates = {}

    def gate(self, user_id):
        self.gates[user_id] = asyncio.Event()
        return self.gates[user_id]

    async def select(self, relation, where=None, order_by=(), limit=None):
        if relation == 'posts' and where and where.get('user_id') in self.gates:
            await self.gates[where['user_id']].wait()
        return await super().select(relation, where, order_by, limit)


class HangingLikesStore(FlakyStore):
    """Like lookups never finish; records how many were cancelled."""

    def __init__(self):
        super().__init__()
        self.cancelled = 0

    async def select(self, relation, where=None, order_by=(), limit=None):
        if relation == 'likes':
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        return await super().select(relation, where, order_by, limit)


class VanishingPostStore(InMemoryStore):
    """Once armed, the target post is deleted just before a like lands."""

    armed = False

    async def insert(self, relation, values):
        if self.armed and relation == 'likes':
            await super().delete('posts', {'id': values['post_id']})
        return await super().insert(relation, values)
