"""
Mutations and the cache patches that follow them.

Each operation writes to the store first and patches the cache only once
every required write succeeded, so a failed operation never leaves a
half-patched cache behind.

Tolerated races:
- Liking an already-liked post, or unliking a post that is not liked,
  hits the store's uniqueness rule or deletes nothing. Both are treated as
  success with the state the caller asked for.
- Two posts introducing the same new tag at once: the loser's insert fails
  with a uniqueness violation, the tag is looked up once more and used.
  If it still cannot be resolved only that tag is skipped.

``create_post`` is not idempotent: retrying it creates a second post.
"""
import logging

from .errors import (
    ConstraintViolation, FetchFailed, InvalidInput, NotAuthenticated,
    Forbidden, WriteFailed,
)
from .store import StoreError, UniqueViolation
from .viewmodels import Author, ViewDescriptor, comment_from_row, normalize_tags

logger = logging.getLogger(__name__)


class MutationCoordinator:

    def __init__(self, store, cache, planner, assembler):
        self.store = store
        self.cache = cache
        self.planner = planner
        self.assembler = assembler

    def _require_viewer(self, viewer, operation, target=None):
        if viewer is None:
            raise NotAuthenticated(operation=operation, target=target)
        return viewer

    async def _write(self, operation, target, call, *args):
        try:
            return await call(*args)
        except UniqueViolation as exc:
            raise ConstraintViolation(str(exc), operation=operation, target=target) from exc
        except StoreError as exc:
            logger.warning('%s on %s failed: %s', operation, target, exc)
            raise WriteFailed(f'Failed to save changes: {exc}', operation=operation, target=target) from exc

    # Posts

    async def create_post(self, viewer, description, content=None, code=None, media=None, tags=()):
        """Insert a post, tag it best-effort and return its id."""
        viewer = self._require_viewer(viewer, 'create_post')
        description = (description or '').strip()
        if not description:
            raise InvalidInput('Post description cannot be empty', operation='create_post', target=viewer.id)

        row = await self._write('create_post', viewer.id, self.store.insert, 'posts', {
            'user_id': viewer.id,
            'description': description,
            'content': content or None,
            'code': code or None,
            'media': media or None,
        })
        post_id = row['id']

        for name in normalize_tags(tags):
            tag_id = await self._resolve_tag(name)
            if tag_id is not None:
                await self._link_tag(post_id, tag_id, name)

        await self._publish_post(post_id, viewer)
        return post_id

    async def _resolve_tag(self, name):
        try:
            rows = await self.store.select('tags', {'name': name}, limit=1)
            if rows:
                return rows[0]['id']
            return (await self.store.insert('tags', {'name': name}))['id']
        except UniqueViolation:
            # Created concurrently by someone else; look it up once more
            logger.info("Tag '%s' was created concurrently, looking it up again", name)
        except StoreError as exc:
            logger.warning("Skipping tag '%s': %s", name, exc)
            return None
        try:
            rows = await self.store.select('tags', {'name': name}, limit=1)
        except StoreError as exc:
            logger.warning("Skipping tag '%s': %s", name, exc)
            return None
        if not rows:
            logger.warning("Skipping tag '%s': not found after a duplicate insert", name)
            return None
        return rows[0]['id']

    async def _link_tag(self, post_id, tag_id, name):
        try:
            await self.store.insert('post_tags', {'post_id': post_id, 'tag_id': tag_id})
        except UniqueViolation:
            pass
        except StoreError as exc:
            logger.warning("Could not link tag '%s' to post %s: %s", name, post_id, exc)

    async def _publish_post(self, post_id, viewer):
        """Prepend the new post to the cached global and author feeds."""
        feeds = (ViewDescriptor.global_feed(), ViewDescriptor.user_feed(viewer.id))
        try:
            rows = await self.planner.post_rows(ViewDescriptor.single_post(post_id), viewer.id)
            post, = await self.assembler.assemble_all(rows, viewer.id)
        except FetchFailed as exc:
            # The post exists; the cached feeds just cannot show it yet
            logger.warning('Could not assemble new post %s, invalidating feeds: %s', post_id, exc)
            for descriptor in feeds:
                self.cache.invalidate(descriptor)
            return
        for descriptor in feeds:
            self.cache.prepend(descriptor, post)
        self.cache.put(ViewDescriptor.single_post(post_id), [post])

    async def delete_post(self, viewer, post_id):
        viewer = self._require_viewer(viewer, 'delete_post', post_id)
        row = await self.planner.require_post(post_id, 'delete_post')
        if row['user_id'] != viewer.id:
            raise Forbidden('You can only delete your own posts', operation='delete_post', target=post_id)
        deleted = await self._write('delete_post', post_id, self.store.delete, 'posts', {'id': post_id})
        if not deleted:
            logger.info('Post %s was already deleted', post_id)
        self.cache.remove_post(post_id)

    # Likes

    async def toggle_like(self, viewer, post_id, currently_liked):
        """Flip the viewer's like on ``post_id`` and return the new state."""
        viewer = self._require_viewer(viewer, 'toggle_like', post_id)
        await self.planner.require_post(post_id, 'toggle_like')
        pair = {'post_id': post_id, 'user_id': viewer.id}

        if currently_liked:
            removed = await self._write('toggle_like', post_id, self.store.delete, 'likes', pair)
            if not removed:
                logger.info('Post %s was not liked by %s, nothing to remove', post_id, viewer.id)
            liked = False
        else:
            try:
                await self._write('toggle_like', post_id, self.store.insert, 'likes', pair)
            except ConstraintViolation:
                logger.info('Post %s already liked by %s', post_id, viewer.id)
            liked = True

        self.cache.patch_post(post_id, lambda post: post.with_like(viewer.id, liked, viewer.id))
        return liked

    # Comments

    async def add_comment(self, viewer, post_id, content):
        viewer = self._require_viewer(viewer, 'add_comment', post_id)
        content = (content or '').strip()
        if not content:
            raise InvalidInput('Comment cannot be empty', operation='add_comment', target=post_id)
        await self.planner.require_post(post_id, 'add_comment')

        row = await self._write('add_comment', post_id, self.store.insert, 'comments', {
            'post_id': post_id,
            'user_id': viewer.id,
            'content': content,
        })
        comment = comment_from_row(row, Author(viewer.id, viewer.username, viewer.avatar))

        self.cache.append_comment(comment)
        self.cache.patch_post(post_id, lambda post: post.with_comment_added())
        return comment

    # Follows

    async def set_following(self, viewer, user_id, follow):
        operation = 'follow' if follow else 'unfollow'
        viewer = self._require_viewer(viewer, operation, user_id)
        if user_id == viewer.id:
            raise InvalidInput('You cannot follow yourself', operation=operation, target=user_id)
        await self.planner.require_user(user_id, operation)
        pair = {'follower_id': viewer.id, 'following_id': user_id}

        if follow:
            try:
                await self._write(operation, user_id, self.store.insert, 'follows', pair)
            except ConstraintViolation:
                logger.info('%s already follows %s', viewer.id, user_id)
        else:
            await self._write(operation, user_id, self.store.delete, 'follows', pair)

        self.cache.invalidate(ViewDescriptor.following_feed())
        return follow
