"""
Fetch planning: which post rows a view needs, in which order.

Every post view (global, user, following) uses the same ordering, newest
first with ties broken by id descending, so any of them can be filtered
down to a subset without reordering.
"""
import logging

from .errors import FetchFailed, NotFound
from .store import StoreError
from .viewmodels import ViewDescriptor, author_from_row, comment_from_row, unknown_author

logger = logging.getLogger(__name__)

POST_ORDERING = ('-created_at', '-id')
COMMENT_ORDERING = ('created_at', 'id')


class FetchPlanner:
    """Read-only. Never retries; retrying is up to the caller."""

    def __init__(self, store):
        self.store = store

    async def post_rows(self, descriptor, viewer_id=None):
        try:
            return await self._post_rows(descriptor, viewer_id)
        except StoreError as exc:
            logger.warning('Fetch of %s failed: %s', descriptor, exc)
            raise FetchFailed(
                f'Failed to load {descriptor}: {exc}',
                operation='fetch', target=descriptor.key,
            ) from exc

    async def _post_rows(self, descriptor, viewer_id):
        kind = descriptor.kind
        if kind == ViewDescriptor.GLOBAL:
            return await self.store.select('posts', order_by=POST_ORDERING)
        if kind == ViewDescriptor.USER:
            return await self.store.select(
                'posts', {'user_id': descriptor.target_id}, order_by=POST_ORDERING)
        if kind == ViewDescriptor.FOLLOWING:
            if viewer_id is None:
                return []
            follows = await self.store.select('follows', {'follower_id': viewer_id})
            following = [row['following_id'] for row in follows]
            if not following:
                return []
            return await self.store.select(
                'posts', {'user_id__in': following}, order_by=POST_ORDERING)
        if kind == ViewDescriptor.POST:
            rows = await self.store.select('posts', {'id': descriptor.target_id}, limit=1)
            if not rows:
                raise NotFound('Post not found', operation='fetch', target=descriptor.key)
            return rows
        raise ValueError(f'{descriptor} is not a post view')

    async def comments(self, post_id):
        """Comments of ``post_id``, oldest first, with their authors."""
        target = ViewDescriptor.post_comments(post_id).key
        try:
            rows = await self.store.select('comments', {'post_id': post_id}, order_by=COMMENT_ORDERING)
            user_ids = sorted({row['user_id'] for row in rows})
            profiles = await self.store.select('profiles', {'id__in': user_ids}) if user_ids else []
        except StoreError as exc:
            logger.warning('Fetch of %s failed: %s', target, exc)
            raise FetchFailed(f'Failed to load comments: {exc}', operation='fetch', target=target) from exc
        authors = {row['id']: author_from_row(row) for row in profiles}
        return [
            comment_from_row(row, authors.get(row['user_id']) or unknown_author(row['user_id']))
            for row in rows
        ]

    async def require_post(self, post_id, operation):
        """Return the post row, raising ``NotFound`` when there is none."""
        try:
            rows = await self.store.select('posts', {'id': post_id}, limit=1)
        except StoreError as exc:
            raise FetchFailed(f'Failed to load post: {exc}', operation=operation, target=post_id) from exc
        if not rows:
            raise NotFound('Post not found', operation=operation, target=post_id)
        return rows[0]

    async def require_user(self, user_id, operation):
        try:
            rows = await self.store.select('profiles', {'id': user_id}, limit=1)
        except StoreError as exc:
            raise FetchFailed(f'Failed to load user: {exc}', operation=operation, target=user_id) from exc
        if not rows:
            raise NotFound('User not found', operation=operation, target=user_id)
        return rows[0]
