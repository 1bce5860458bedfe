"""
View descriptors, view models and the row mappers that build them.

Each mapper lists every column it reads. A row missing one of them is
rejected at the boundary instead of producing a half-filled view model.
"""
from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

from .errors import FetchFailed

POST_COLUMNS = ('id', 'user_id', 'description', 'content', 'code', 'media', 'created_at', 'updated_at')
COMMENT_COLUMNS = ('id', 'post_id', 'user_id', 'content', 'created_at')
PROFILE_COLUMNS = ('id', 'username', 'profile_picture')


@dataclass(frozen=True)
class ViewDescriptor:
    """Identifies one cacheable view."""
    kind: str
    target_id: Any = None

    GLOBAL = 'global'
    USER = 'user'
    FOLLOWING = 'following'
    POST = 'post'
    COMMENTS = 'comments'

    @classmethod
    def global_feed(cls):
        return cls(cls.GLOBAL)

    @classmethod
    def user_feed(cls, user_id):
        return cls(cls.USER, user_id)

    @classmethod
    def following_feed(cls):
        return cls(cls.FOLLOWING)

    @classmethod
    def single_post(cls, post_id):
        return cls(cls.POST, post_id)

    @classmethod
    def post_comments(cls, post_id):
        return cls(cls.COMMENTS, post_id)

    @property
    def key(self):
        if self.kind == self.GLOBAL:
            return 'feed:global'
        if self.kind == self.FOLLOWING:
            return 'feed:following'
        if self.kind == self.USER:
            return f'feed:user:{self.target_id}'
        return f'{self.kind}:{self.target_id}'

    @property
    def holds_posts(self):
        return self.kind != self.COMMENTS

    def __str__(self):
        return self.key


@dataclass(frozen=True)
class Author:
    id: Any
    username: str
    avatar: Optional[str] = None


@dataclass(frozen=True)
class PostView:
    """A post with its like-set, comment count and tags folded in."""
    id: Any
    author: Author
    description: str
    content: str
    code: Optional[str]
    media: Optional[str]
    created_at: Any
    updated_at: Any
    like_user_ids: Tuple[Any, ...] = ()
    comments_count: int = 0
    tags: Tuple[str, ...] = ()
    is_liked: bool = False

    @property
    def likes_count(self):
        return len(self.like_user_ids)

    def with_like(self, user_id, liked, viewer_id=None):
        """Return a copy with ``user_id`` added to or removed from the like-set."""
        likes = tuple(uid for uid in self.like_user_ids if uid != user_id)
        if liked:
            likes += (user_id,)
        is_liked = self.is_liked
        if viewer_id is not None and user_id == viewer_id:
            is_liked = liked
        return replace(self, like_user_ids=likes, is_liked=is_liked)

    def with_comment_added(self):
        return replace(self, comments_count=self.comments_count + 1)


@dataclass(frozen=True)
class CommentView:
    id: Any
    post_id: Any
    author: Author
    content: str
    created_at: Any


def _require(row, columns, relation):
    missing = [column for column in columns if column not in row]
    if missing:
        raise FetchFailed(
            f"Malformed {relation} row: missing {', '.join(missing)}",
            operation='map', target=row.get('id'),
        )


def author_from_row(row):
    _require(row, PROFILE_COLUMNS, 'profiles')
    return Author(id=row['id'], username=row['username'], avatar=row['profile_picture'])


def unknown_author(user_id):
    return Author(id=user_id, username='Unknown')


def post_from_row(row, author, like_user_ids, comments_count, tags, viewer_id=None):
    _require(row, POST_COLUMNS, 'posts')
    likes = tuple(like_user_ids)
    return PostView(
        id=row['id'],
        author=author,
        description=row['description'],
        content=row['content'] or row['description'],
        code=row['code'],
        media=row['media'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        like_user_ids=likes,
        comments_count=comments_count or 0,
        tags=tuple(tags),
        is_liked=viewer_id is not None and viewer_id in likes,
    )


def comment_from_row(row, author):
    _require(row, COMMENT_COLUMNS, 'comments')
    return CommentView(
        id=row['id'],
        post_id=row['post_id'],
        author=author,
        content=row['content'],
        created_at=row['created_at'],
    )


def normalize_tag(name):
    """``' React '`` -> ``'react'``; blank names normalize to ``None``."""
    name = (name or '').strip().lower()
    return name or None


def normalize_tags(names):
    """Normalize and de-duplicate, keeping first-seen order."""
    seen = []
    for name in names or ():
        tag = normalize_tag(name)
        if tag and tag not in seen:
            seen.append(tag)
    return seen
