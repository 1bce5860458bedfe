"""
Relational store contract and its Django ORM implementation.

The aggregation layer only ever talks to a ``RelationalStore``. Rows are
plain dicts keyed by the column names of the persistence contract (see
``feed.models``). Filters use Django lookup syntax restricted to two forms:

    {'post_id': 12}              exact match
    {'user_id__in': [1, 2, 3]}   membership

Ordering is a sequence of column names, ``-`` prefixed for descending.

Implementations raise ``StoreError`` for anything that went wrong and
``UniqueViolation`` when a uniqueness constraint rejected an insert.
"""
import abc
import logging

from asgiref.sync import sync_to_async
from django.apps import apps
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F

logger = logging.getLogger(__name__)

RELATIONS = ('posts', 'comments', 'likes', 'tags', 'post_tags', 'profiles', 'follows')


class StoreError(Exception):
    """The store could not serve the request."""

    def __init__(self, message, relation=None):
        self.relation = relation
        super().__init__(message)


class UniqueViolation(StoreError):
    """An insert collided with a uniqueness constraint."""


def split_lookup(key):
    """Split ``'user_id__in'`` into ``('user_id', 'in')``."""
    if key.endswith('__in'):
        return key[:-4], 'in'
    return key, 'exact'


UNIQUE_SQLSTATE = '23505'


def is_unique_violation(exc):
    """
    True if an ``IntegrityError`` came from a uniqueness constraint.

    PostgreSQL drivers expose the SQLSTATE on the wrapped driver error;
    SQLite and MySQL only say so in the message.
    """
    cause = exc.__cause__
    sqlstate = getattr(cause, 'pgcode', None) or getattr(cause, 'sqlstate', None)
    if sqlstate:
        return sqlstate == UNIQUE_SQLSTATE
    message = str(exc).lower()
    return 'unique' in message or 'duplicate' in message


class RelationalStore(abc.ABC):
    """Async row-level access to the named relations."""

    @abc.abstractmethod
    async def select(self, relation, where=None, order_by=(), limit=None):
        """Return the rows of ``relation`` matching ``where``, ordered."""

    @abc.abstractmethod
    async def count(self, relation, where=None):
        """Return the number of rows of ``relation`` matching ``where``."""

    @abc.abstractmethod
    async def insert(self, relation, values):
        """Insert one row and return it, including its generated id."""

    @abc.abstractmethod
    async def delete(self, relation, where):
        """Delete matching rows and return how many rows of ``relation`` went away."""


class DjangoStore(RelationalStore):
    """
    ``RelationalStore`` over the ``feed`` models.

    Each relation maps to a model plus a column map (contract column ->
    ORM path). The ORM is synchronous, so every call is pushed through
    ``sync_to_async``; inserts run inside ``transaction.atomic()`` so a
    constraint failure never poisons an enclosing transaction.
    """

    TABLES = {
        'posts': ('feed.Post', {
            'id': 'id',
            'user_id': 'user_id',
            'description': 'description',
            'content': 'content',
            'code': 'code',
            'media': 'media',
            'created_at': 'created_at',
            'updated_at': 'updated_at',
        }),
        'comments': ('feed.Comment', {
            'id': 'id',
            'post_id': 'post_id',
            'user_id': 'user_id',
            'content': 'content',
            'created_at': 'created_at',
        }),
        'likes': ('feed.Like', {
            'post_id': 'post_id',
            'user_id': 'user_id',
            'created_at': 'created_at',
        }),
        'tags': ('feed.Tag', {
            'id': 'id',
            'name': 'name',
        }),
        'post_tags': ('feed.PostTag', {
            'post_id': 'post_id',
            'tag_id': 'tag_id',
        }),
        'profiles': ('feed.Profile', {
            'id': 'user_id',
            'username': 'user__username',
            'profile_picture': 'profile_picture',
        }),
        'follows': ('feed.Follow', {
            'follower_id': 'follower_id',
            'following_id': 'following_id',
            'created_at': 'created_at',
        }),
    }

    def _table(self, relation):
        try:
            label, columns = self.TABLES[relation]
        except KeyError:
            raise StoreError(f"Unknown relation '{relation}'", relation)
        return apps.get_model(label), columns

    def _path(self, relation, columns, column):
        try:
            return columns[column]
        except KeyError:
            raise StoreError(f"Unknown column '{column}' on '{relation}'", relation)

    def _filtered(self, relation, where):
        model, columns = self._table(relation)
        lookups = {}
        for key, value in (where or {}).items():
            column, op = split_lookup(key)
            path = self._path(relation, columns, column)
            lookups[path if op == 'exact' else f'{path}__in'] = value
        return model.objects.filter(**lookups), columns

    def _project(self, queryset, columns):
        plain = [name for name, path in columns.items() if name == path]
        aliased = {name: F(path) for name, path in columns.items() if name != path}
        return [dict(row) for row in queryset.values(*plain, **aliased)]

    def _select(self, relation, where, order_by, limit):
        try:
            queryset, columns = self._filtered(relation, where)
            ordering = []
            for column in order_by:
                descending = column.startswith('-')
                path = self._path(relation, columns, column.lstrip('-'))
                ordering.append(f'-{path}' if descending else path)
            queryset = queryset.order_by(*ordering)
            if limit is not None:
                queryset = queryset[:limit]
            return self._project(queryset, columns)
        except DatabaseError as exc:
            raise StoreError(str(exc), relation) from exc

    def _count(self, relation, where):
        try:
            queryset, _ = self._filtered(relation, where)
            return queryset.count()
        except DatabaseError as exc:
            raise StoreError(str(exc), relation) from exc

    def _insert(self, relation, values):
        model, columns = self._table(relation)
        fields = {self._path(relation, columns, column): value for column, value in values.items()}
        try:
            with transaction.atomic():
                obj = model.objects.create(**fields)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise UniqueViolation(str(exc), relation) from exc
            # Foreign key or NOT NULL failures, e.g. the post was deleted
            raise StoreError(str(exc), relation) from exc
        except DatabaseError as exc:
            raise StoreError(str(exc), relation) from exc
        return self._project(model.objects.filter(pk=obj.pk), columns)[0]

    def _delete(self, relation, where):
        if not where:
            raise StoreError('Refusing to delete without a filter', relation)
        try:
            queryset, _ = self._filtered(relation, where)
            with transaction.atomic():
                _, per_model = queryset.delete()
        except DatabaseError as exc:
            raise StoreError(str(exc), relation) from exc
        return per_model.get(queryset.model._meta.label, 0)

    async def select(self, relation, where=None, order_by=(), limit=None):
        return await sync_to_async(self._select)(relation, where, order_by, limit)

    async def count(self, relation, where=None):
        return await sync_to_async(self._count)(relation, where)

    async def insert(self, relation, values):
        return await sync_to_async(self._insert)(relation, values)

    async def delete(self, relation, where):
        return await sync_to_async(self._delete)(relation, where)
