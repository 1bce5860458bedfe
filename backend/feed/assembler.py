"""
Post assembly: fold likes, comment counts and tags into raw post rows.

For every post the three lookups are independent and issued concurrently.
They are not a transactional snapshot: a like or comment landing between
two sub-reads can show up in one and not the other. A transient undercount
is accepted.

A failure in any sub-lookup fails the whole batch and cancels the lookups
still running; partial feeds are never returned.
"""
import asyncio
import logging

from .errors import FetchFailed
from .store import StoreError
from .viewmodels import author_from_row, post_from_row, unknown_author

logger = logging.getLogger(__name__)


async def gather_or_cancel(*aws):
    """
    ``asyncio.gather`` that cancels the remaining awaitables when one fails
    and waits for them to wind down before re-raising.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class PostAssembler:

    def __init__(self, store):
        self.store = store

    async def like_user_ids(self, post_id):
        rows = await self.store.select('likes', {'post_id': post_id}, order_by=('created_at',))
        return [row['user_id'] for row in rows]

    async def comments_count(self, post_id):
        return await self.store.count('comments', {'post_id': post_id})

    async def tag_names(self, post_id):
        links = await self.store.select('post_tags', {'post_id': post_id})
        if not links:
            return []
        tag_ids = [link['tag_id'] for link in links]
        tags = await self.store.select('tags', {'id__in': tag_ids}, order_by=('name',))
        return [tag['name'] for tag in tags]

    async def authors(self, user_ids):
        """Map user id -> ``Author`` with a single read."""
        user_ids = sorted(set(user_ids))
        if not user_ids:
            return {}
        rows = await self.store.select('profiles', {'id__in': user_ids})
        return {row['id']: author_from_row(row) for row in rows}

    async def assemble(self, row, author, viewer_id=None):
        likes, comments, tags = await gather_or_cancel(
            self.like_user_ids(row['id']),
            self.comments_count(row['id']),
            self.tag_names(row['id']),
        )
        return post_from_row(row, author, likes, comments, tags, viewer_id)

    async def assemble_all(self, rows, viewer_id=None, view=None):
        """
        Assemble ``rows`` in their given order.

        ``view`` only labels the error raised when a lookup fails.
        """
        target = str(view) if view is not None else None
        try:
            authors = await self.authors(row['user_id'] for row in rows)
            return list(await gather_or_cancel(*(
                self.assemble(row, authors.get(row['user_id']) or unknown_author(row['user_id']), viewer_id)
                for row in rows
            )))
        except StoreError as exc:
            logger.warning('Assembly of %s failed on %s: %s', target, exc.relation, exc)
            raise FetchFailed(f'Failed to load posts: {exc}', operation='fetch', target=target) from exc
