"""
Viewer sessions and the per-viewer FeedClient registry.

The feed layer reads the current viewer synchronously and never changes
it. Over HTTP the viewer comes from ``request.user`` (JWT authentication);
each viewer gets one long-lived ``FeedClient`` so its cache survives
between requests.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

from django.conf import settings
from django.utils.module_loading import import_string

from .client import FeedClient
from .notifications import MessageBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Viewer:
    id: Any
    username: str
    avatar: Optional[str] = None


class SessionProvider:
    def current_viewer(self):
        raise NotImplementedError


class StaticSession(SessionProvider):
    """A session whose viewer is fixed for its lifetime (or anonymous)."""

    def __init__(self, viewer=None):
        self.viewer = viewer

    def current_viewer(self):
        return self.viewer


def viewer_from_user(user):
    """Build a ``Viewer`` from a Django user; None for anonymous users."""
    if user is None or not user.is_authenticated:
        return None
    profile = getattr(user, 'profile', None)
    avatar = profile.profile_picture if profile is not None else None
    return Viewer(id=user.id, username=user.username, avatar=avatar or None)


@lru_cache(maxsize=None)
def get_store():
    """Instantiate the store configured by ``FEED_STORE`` once per process."""
    store_class = import_string(settings.FEED_STORE)
    logger.info('Using %s as feed store', settings.FEED_STORE)
    return store_class()


class ClientRegistry:
    """
    Bounded LRU map of viewer id -> ``FeedClient``.

    Anonymous requests share one client.
    """

    def __init__(self, maxsize=None, store_factory=get_store):
        self.maxsize = maxsize
        self.store_factory = store_factory
        self._clients = OrderedDict()
        self._lock = threading.Lock()

    def for_user(self, user):
        viewer = viewer_from_user(user)
        key = viewer.id if viewer is not None else None
        maxsize = self.maxsize or settings.FEED_CLIENT_CACHE_SIZE
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = FeedClient(self.store_factory(), StaticSession(viewer), MessageBuffer())
                self._clients[key] = client
            else:
                # Display name or avatar may have changed since
                client.session.viewer = viewer
                self._clients.move_to_end(key)
            while len(self._clients) > maxsize:
                evicted, _ = self._clients.popitem(last=False)
                logger.debug('Dropped feed client of viewer %s', evicted)
            return client

    def clear(self):
        with self._lock:
            self._clients.clear()


clients = ClientRegistry()
