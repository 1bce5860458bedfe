"""
Models for the CodeConnects feed.

These tables are the persistence contract the aggregation layer reads and
writes through ``feed.store.DjangoStore``:

    posts(id, user_id, description, content, code, media, created_at, updated_at)
    comments(id, post_id, user_id, content, created_at)
    likes(post_id, user_id)            unique pair
    tags(id, name)                     unique name
    post_tags(post_id, tag_id)         composite key
    profiles(id, username, profile_picture)
    follows(follower_id, following_id) unique pair

Design decisions:
1. Like counts, comment counts and tag lists are never stored on Post.
   They are always derived from the Like/Comment/PostTag rows.
2. Uniqueness (one like per user per post, one tag per name) is enforced
   with DB constraints, the only reliable guard against double submits.
3. Deleting a Post cascades to its comments, likes and tag links.
"""
from django.db import models
from django.contrib.auth.models import User


class Profile(models.Model):
    """
    Display identity of a user (the ``profiles`` relation).

    The primary key is the user id, so ``profiles.id`` and
    ``posts.user_id`` share the same value space.
    """
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='profile'
    )
    profile_picture = models.URLField(blank=True, null=True)
    bio = models.TextField(blank=True, default='')

    def __str__(self):
        return f"Profile of {self.user.username}"


class Post(models.Model):
    """
    A post in the feed.

    Indexes:
    - created_at: For ordering posts by time
    - user + created_at: For a user's feed
    """
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts'
    )
    description = models.TextField()
    content = models.TextField(blank=True, null=True)
    code = models.TextField(blank=True, null=True)
    media = models.CharField(max_length=500, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['-created_at', '-id'], name='post_feed_order'),
            models.Index(fields=['user', '-created_at'], name='post_user_feed'),
        ]

    def __str__(self):
        return f"Post {self.id} by {self.user.username}"


class Comment(models.Model):
    """
    A flat comment on a post.

    Comments are never edited; they disappear only when their post is
    deleted (cascade).
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [
            # Composite index for fetching all comments for a post
            models.Index(fields=['post', 'created_at'], name='comment_post_order'),
        ]

    def __str__(self):
        return f"Comment {self.id} on Post {self.post_id}"


class Like(models.Model):
    """
    A (post, user) pair. Existence means "liked".

    CRITICAL: the unique constraint is what keeps a like-set free of
    duplicates. Application-level checks are not sufficient due to
    TOCTOU races between two submits.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['post', 'user'],
                name='unique_post_user_like'
            ),
        ]

    def __str__(self):
        return f"Like by {self.user_id} on Post {self.post_id}"


class Tag(models.Model):
    """
    A tag, identified by its normalized (lower-cased, trimmed) name.

    Tags are created lazily the first time a post uses them and are
    never deleted.
    """
    name = models.CharField(max_length=50, unique=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class PostTag(models.Model):
    """Join row between a post and one of its tags."""
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='post_tags'
    )
    tag = models.ForeignKey(
        Tag,
        on_delete=models.CASCADE,
        related_name='post_tags'
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['post', 'tag'],
                name='unique_post_tag'
            ),
        ]

    def __str__(self):
        return f"Tag {self.tag_id} on Post {self.post_id}"


class Follow(models.Model):
    """``follower`` sees ``following``'s posts in their following feed."""
    follower = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='following_set'
    )
    following = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='follower_set'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['follower', 'following'],
                name='unique_follow'
            ),
        ]

    def __str__(self):
        return f"{self.follower_id} follows {self.following_id}"
