"""
Process-local ``RelationalStore``.

Honours the same contract as ``DjangoStore``: generated ids, timestamps,
foreign keys to posts and tags, uniqueness constraints and the post-delete
cascade. Every call yields to the event loop once, so concurrent callers
interleave the way they would against a remote store.
"""
import asyncio
import itertools
import logging
from collections import defaultdict

from django.utils import timezone

from .store import RELATIONS, RelationalStore, StoreError, UniqueViolation, split_lookup

logger = logging.getLogger(__name__)


class InMemoryStore(RelationalStore):

    # Relations with a generated ``id`` column
    SERIAL = ('posts', 'comments', 'tags')

    UNIQUE = {
        'likes': ('post_id', 'user_id'),
        'tags': ('name',),
        'post_tags': ('post_id', 'tag_id'),
        'follows': ('follower_id', 'following_id'),
    }

    # Child column -> parent relation, checked on insert
    REFERENCES = {
        'comments': (('post_id', 'posts'),),
        'likes': (('post_id', 'posts'),),
        'post_tags': (('post_id', 'posts'), ('tag_id', 'tags')),
    }

    CASCADE = {
        'posts': (('comments', 'post_id'), ('likes', 'post_id'), ('post_tags', 'post_id')),
    }

    STAMPED = {
        'posts': ('created_at', 'updated_at'),
        'comments': ('created_at',),
        'likes': ('created_at',),
        'follows': ('created_at',),
    }

    def __init__(self):
        self.tables = {relation: [] for relation in RELATIONS}
        self._ids = defaultdict(lambda: itertools.count(1))

    def _rows(self, relation):
        try:
            return self.tables[relation]
        except KeyError:
            raise StoreError(f"Unknown relation '{relation}'", relation)

    def _matches(self, row, where):
        for key, expected in (where or {}).items():
            column, op = split_lookup(key)
            value = row.get(column)
            if op == 'in':
                if value not in expected:
                    return False
            elif value != expected:
                return False
        return True

    def _sorted(self, rows, order_by):
        # Stable sorts applied from the least significant key up
        for column in reversed(order_by):
            descending = column.startswith('-')
            name = column.lstrip('-')
            rows = sorted(rows, key=lambda row: row[name], reverse=descending)
        return rows

    def add_profile(self, user_id, username, profile_picture=None):
        """Seed a display identity; profiles are owned by the auth system."""
        self.tables['profiles'].append({
            'id': user_id,
            'username': username,
            'profile_picture': profile_picture,
        })

    async def select(self, relation, where=None, order_by=(), limit=None):
        await asyncio.sleep(0)
        rows = [dict(row) for row in self._rows(relation) if self._matches(row, where)]
        rows = self._sorted(rows, order_by)
        return rows if limit is None else rows[:limit]

    async def count(self, relation, where=None):
        await asyncio.sleep(0)
        return sum(1 for row in self._rows(relation) if self._matches(row, where))

    async def insert(self, relation, values):
        await asyncio.sleep(0)
        rows = self._rows(relation)
        row = dict(values)
        unique = self.UNIQUE.get(relation)
        if unique:
            key = tuple(row.get(column) for column in unique)
            if any(tuple(other.get(column) for column in unique) == key for other in rows):
                raise UniqueViolation(f'duplicate key {key} in {relation}', relation)
        for column, parent in self.REFERENCES.get(relation, ()):
            if not any(other['id'] == row.get(column) for other in self.tables[parent]):
                raise StoreError(f'{relation}.{column} references a missing {parent} row', relation)
        if relation in self.SERIAL:
            row['id'] = next(self._ids[relation])
        now = timezone.now()
        for column in self.STAMPED.get(relation, ()):
            row.setdefault(column, now)
        rows.append(row)
        return dict(row)

    async def delete(self, relation, where):
        await asyncio.sleep(0)
        if not where:
            raise StoreError('Refusing to delete without a filter', relation)
        rows = self._rows(relation)
        doomed = [row for row in rows if self._matches(row, where)]
        self.tables[relation] = [row for row in rows if not self._matches(row, where)]
        for child, column in self.CASCADE.get(relation, ()):
            ids = [row['id'] for row in doomed]
            self.tables[child] = [row for row in self.tables[child] if row[column] not in ids]
        return len(doomed)
