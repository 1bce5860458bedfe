"""
Views for the CodeConnects feed API.

The views are thin: they validate the payload, hand the call to the
viewer's ``FeedClient`` and serialize what comes back. The client is
async; DRF views are sync, so calls go through ``async_to_sync`` while
holding the client's lock. Requests of one viewer share a client and
are served one at a time.

Error mapping: every ``FeedError`` becomes
``{'error', 'operation', 'target'}`` with the error's status code.
"""
from asgiref.sync import async_to_sync

from rest_framework import status, views, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .errors import FeedError, FetchFailed
from .serializers import (
    CommentCreateSerializer, CommentViewSerializer, FollowSerializer,
    LikeSerializer, PostCreateSerializer, PostViewSerializer,
)
from .session import clients
from .viewmodels import ViewDescriptor


def _error_response(exc):
    return Response(
        {'error': str(exc), **exc.context},
        status=exc.status_code
    )


class FeedViewMixin:
    """Resolves the viewer's client and maps feed errors."""
    permission_classes = []  # Read: anyone, Write: checked by the feed layer

    def get_client(self):
        return clients.for_user(self.request.user)

    def handle_exception(self, exc):
        if isinstance(exc, FeedError):
            return _error_response(exc)
        return super().handle_exception(exc)

    def call(self, client, name, *args, **kwargs):
        """Run ``client.<name>`` to completion, one request per client at a time."""
        with client.lock:
            return async_to_sync(getattr(client, name))(*args, **kwargs)

    def read_view(self, client, descriptor):
        # Other viewers may have written since this client last read the view
        items = self.call(client, 'navigate', descriptor, force=True)
        if items is None:
            items = self.call(client, 'read', descriptor, force=True)
        if items is None:
            raise FetchFailed(
                'The view changed while loading, please retry',
                operation='fetch', target=descriptor.key,
            )
        return items

    def view_response(self, client, descriptor, serializer_class):
        items = self.read_view(client, descriptor)
        return Response(serializer_class(items, many=True).data)

    def message(self, client):
        return client.notifier.last()


class PostViewSet(FeedViewMixin, viewsets.ViewSet):
    """
    Posts and their comments.

    list:     global feed, or ``?scope=following``
    retrieve: single post view
    """
    lookup_value_regex = r'\d+'

    def list(self, request):
        client = self.get_client()
        if request.query_params.get('scope') == 'following':
            descriptor = ViewDescriptor.following_feed()
        else:
            descriptor = ViewDescriptor.global_feed()
        return self.view_response(client, descriptor, PostViewSerializer)

    def create(self, request):
        serializer = PostCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client = self.get_client()
        post_id = self.call(client, 'create_post', **serializer.validated_data)
        body = {'id': post_id, 'message': self.message(client)}
        cached = client.cache.get(ViewDescriptor.single_post(post_id))
        if cached:
            body['post'] = PostViewSerializer(cached[0]).data
        return Response(
            body,
            status=status.HTTP_201_CREATED
        )

    def retrieve(self, request, pk=None):
        client = self.get_client()
        posts = self.read_view(client, ViewDescriptor.single_post(int(pk)))
        return Response(PostViewSerializer(posts[0]).data)

    def destroy(self, request, pk=None):
        client = self.get_client()
        self.call(client, 'delete_post', int(pk))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['get', 'post'])
    def comments(self, request, pk=None):
        client = self.get_client()
        post_id = int(pk)
        if request.method == 'GET':
            return self.view_response(client, ViewDescriptor.post_comments(post_id), CommentViewSerializer)

        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = self.call(client, 'add_comment', post_id, serializer.validated_data['content'])
        return Response(
            {**CommentViewSerializer(comment).data, 'message': self.message(client)},
            status=status.HTTP_201_CREATED
        )


class UserPostsView(FeedViewMixin, views.APIView):
    """Feed of one user's posts."""

    def get(self, request, user_id):
        return self.view_response(self.get_client(), ViewDescriptor.user_feed(user_id), PostViewSerializer)


class LikeView(FeedViewMixin, views.APIView):
    """
    Like (POST) or unlike (DELETE) a post.

    Both are safe to repeat: liking a liked post or unliking a post that
    is not liked answers with the current state instead of an error.
    """

    def post(self, request):
        return self._toggle(request, currently_liked=False)

    def delete(self, request):
        return self._toggle(request, currently_liked=True)

    def _toggle(self, request, currently_liked):
        serializer = LikeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client = self.get_client()
        post_id = serializer.validated_data['post']
        liked = self.call(client, 'toggle_like', post_id, currently_liked)
        return Response(
            {'post': post_id, 'is_liked': liked, 'message': self.message(client)},
            status=status.HTTP_201_CREATED if liked else status.HTTP_200_OK
        )


class FollowView(FeedViewMixin, views.APIView):
    """Follow (POST) or unfollow (DELETE) a user."""

    def post(self, request):
        return self._set(request, follow=True)

    def delete(self, request):
        return self._set(request, follow=False)

    def _set(self, request, follow):
        serializer = FollowSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client = self.get_client()
        user_id = serializer.validated_data['user']
        if follow:
            self.call(client, 'follow', user_id)
        else:
            self.call(client, 'unfollow', user_id)
        return Response(
            {'user': user_id, 'following': follow, 'message': self.message(client)},
            status=status.HTTP_200_OK
        )
