"""
FeedClient: the entry point UI callers use.

Wires the planner, assembler, cache and mutation coordinator around one
store and one viewer session. Reads are served from the cache unless the
view is missing or a refetch is forced. Every operation reports its
outcome to the notification sink; errors are re-raised after that.
"""
import logging
import threading

from .assembler import PostAssembler
from .cache import STALE, WRITTEN, FeedCache
from .coordinator import MutationCoordinator
from .errors import FeedError
from .notifications import LoggingNotifier
from .planner import FetchPlanner
from .viewmodels import ViewDescriptor

logger = logging.getLogger(__name__)


class FeedClient:

    def __init__(self, store, session, notifier=None):
        self.store = store
        self.session = session
        self.notifier = notifier or LoggingNotifier()
        self.cache = FeedCache()
        self.planner = FetchPlanner(store)
        self.assembler = PostAssembler(store)
        self.coordinator = MutationCoordinator(store, self.cache, self.planner, self.assembler)
        # Held by synchronous callers for a whole call; the cache is not thread-safe
        self.lock = threading.Lock()

    @property
    def viewer(self):
        return self.session.current_viewer()

    @property
    def viewer_id(self):
        viewer = self.viewer
        return viewer.id if viewer is not None else None

    # Reads

    async def read(self, descriptor, force=False):
        """
        Return the view for ``descriptor``.

        Returns None when the response arrived after the caller navigated
        elsewhere; nothing was cached in that case.
        """
        if not force:
            cached = self.cache.get(descriptor)
            if cached is not None:
                return cached

        token = self.cache.begin(descriptor)
        try:
            items = await self._load(descriptor)
        except FeedError as exc:
            self.cache.cancel(descriptor, token)
            self.notifier.error(str(exc))
            raise

        outcome = self.cache.commit(descriptor, token, items)
        if outcome == WRITTEN:
            return self.cache.get(descriptor)
        if outcome == STALE:
            return None
        # Patched while in flight: hand out what was read, cache nothing
        return items

    async def _load(self, descriptor):
        if descriptor.kind == ViewDescriptor.COMMENTS:
            await self.planner.require_post(descriptor.target_id, 'fetch')
            return await self.planner.comments(descriptor.target_id)
        viewer_id = self.viewer_id
        rows = await self.planner.post_rows(descriptor, viewer_id)
        return await self.assembler.assemble_all(rows, viewer_id, descriptor)

    async def navigate(self, descriptor, force=False):
        """
        Make ``descriptor`` the active view and read it.

        Arriving at a view from another one always refetches it; staying
        on the active view serves the cached entry unless ``force``.
        """
        force = force or self.cache.active != descriptor
        self.cache.activate(descriptor)
        return await self.read(descriptor, force=force)

    async def global_feed(self, force=False):
        return await self.read(ViewDescriptor.global_feed(), force)

    async def user_feed(self, user_id, force=False):
        return await self.read(ViewDescriptor.user_feed(user_id), force)

    async def following_feed(self, force=False):
        return await self.read(ViewDescriptor.following_feed(), force)

    async def post(self, post_id, force=False):
        posts = await self.read(ViewDescriptor.single_post(post_id), force)
        return posts[0] if posts else None

    async def comments(self, post_id, force=False):
        return await self.read(ViewDescriptor.post_comments(post_id), force)

    # Mutations

    async def _run(self, success, call, *args, **kwargs):
        try:
            result = await call(*args, **kwargs)
        except FeedError as exc:
            self.notifier.error(str(exc))
            raise
        message = success(result) if callable(success) else success
        self.notifier.success(message)
        return result

    async def create_post(self, description, content=None, code=None, media=None, tags=()):
        return await self._run(
            'Post created successfully', self.coordinator.create_post,
            self.viewer, description, content=content, code=code, media=media, tags=tags,
        )

    async def toggle_like(self, post_id, currently_liked):
        return await self._run(
            lambda liked: 'Post liked' if liked else 'Post unliked',
            self.coordinator.toggle_like, self.viewer, post_id, currently_liked,
        )

    async def add_comment(self, post_id, content):
        return await self._run('Comment added', self.coordinator.add_comment, self.viewer, post_id, content)

    async def delete_post(self, post_id):
        return await self._run('Post deleted', self.coordinator.delete_post, self.viewer, post_id)

    async def follow(self, user_id):
        return await self._run('Followed', self.coordinator.set_following, self.viewer, user_id, True)

    async def unfollow(self, user_id):
        return await self._run('Unfollowed', self.coordinator.set_following, self.viewer, user_id, False)
