"""
Serializers for the CodeConnects feed API.

Design decisions:
1. Output serializers read the assembled view models (plain dataclasses),
   never the ORM models, so responses match what the cache holds.
2. Input serializers only check shape; the feed layer owns the business
   rules (blank comments, tag normalisation, authentication).
"""
from rest_framework import serializers


class AuthorSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    username = serializers.CharField()
    avatar = serializers.CharField(allow_null=True)


class PostViewSerializer(serializers.Serializer):
    """
    Denormalized post: author, like-set, counts and tags.

    ``likes`` is the list of user ids that liked the post.
    """
    id = serializers.IntegerField()
    author = AuthorSerializer()
    description = serializers.CharField()
    content = serializers.CharField()
    code = serializers.CharField(allow_null=True)
    media = serializers.CharField(allow_null=True)
    likes = serializers.ListField(source='like_user_ids', child=serializers.IntegerField())
    likes_count = serializers.IntegerField()
    comments_count = serializers.IntegerField()
    tags = serializers.ListField(child=serializers.CharField())
    is_liked = serializers.BooleanField()
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()


class CommentViewSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    post = serializers.IntegerField(source='post_id')
    author = AuthorSerializer()
    content = serializers.CharField()
    created_at = serializers.DateTimeField()


class PostCreateSerializer(serializers.Serializer):
    description = serializers.CharField()
    content = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    code = serializers.CharField(required=False, allow_blank=True, allow_null=True, trim_whitespace=False)
    media = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=500)
    tags = serializers.ListField(
        child=serializers.CharField(max_length=50, allow_blank=True),
        required=False,
        default=list
    )


class CommentCreateSerializer(serializers.Serializer):
    # Blank content is rejected by the feed layer with a precise message
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)


class LikeSerializer(serializers.Serializer):
    """``post`` is the target; the HTTP method carries the current state."""
    post = serializers.IntegerField()


class FollowSerializer(serializers.Serializer):
    user = serializers.IntegerField()
