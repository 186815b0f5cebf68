"""
Mutation Services: Songs, Likes & Comments
==========================================

This module handles every write the app performs with:
1. Authentication and validation BEFORE any write
2. One atomic transaction per mutation (row write + score change)
3. Conflict-safe like inserts
4. Authoritative post-commit counts

CONCURRENCY STRATEGY:
---------------------
Problem: Two toggles for the same (user, song) at the exact same moment
Naive: Check if exists -> Create if not -> RACE CONDITION!

Toggle = DELETE first, INSERT only if nothing was deleted:
    - DELETE reports how many rows it removed, so "was it liked?" and
      "unlike it" are one statement
    - The INSERT runs in a savepoint; if a concurrent toggle inserted the
      same row first, the unique constraint raises IntegrityError, we roll
      back the savepoint and treat the pair as liked (no second +1)

The returned count is ALWAYS re-read from the like table after commit,
never computed as old_count +/- 1 in memory.

TRANSACTION STRATEGY:
--------------------
Like/comment row writes and trending score changes are in the same
transaction. If either fails, both are rolled back -> consistent state.
Any DatabaseError is logged and re-raised as StorageError.
"""

import logging
from typing import Optional

from django.db import transaction, IntegrityError, DatabaseError

from . import trending
from .exceptions import InvalidInput, NotFound, PermissionDenied, StorageError, Unauthenticated
from .models import Comment, CommentLike, Song, SongLike, COMMENT_MAX_LENGTH
from .queries import CommentNode, with_comment_stats

logger = logging.getLogger(__name__)


class LikeResult:
    """Authoritative like state after a toggle."""
    def __init__(self, liked: bool, count: int):
        self.liked = liked
        self.count = count

    def as_dict(self) -> dict:
        return {'liked': self.liked, 'count': self.count}


def require_user(user):
    """Reject anonymous callers before anything else is looked at."""
    if user is None or not getattr(user, 'is_authenticated', False):
        raise Unauthenticated()
    return user


# ============================================================================
# SONGS
# ============================================================================

SONG_FIELDS = ('name', 'artist', 'album', 'cover_url', 'external_url')


def save_song(user, track: dict) -> tuple[Song, bool]:
    """
    Persist a catalog track. Idempotent: a second save is a no-op.

    RETURNS: (song, created)
    """
    require_user(user)

    song_id = str(track.get('id') or '').strip()
    name = str(track.get('name') or '').strip()
    if not song_id:
        raise InvalidInput('Song id is required.')
    if not name:
        raise InvalidInput('Song name is required.')

    defaults = {field: track.get(field) or None for field in SONG_FIELDS}
    defaults['name'] = name

    try:
        try:
            with transaction.atomic():
                song, created = Song.objects.get_or_create(id=song_id, defaults=defaults)
        except IntegrityError:
            # A concurrent save won the insert - the row exists now
            song, created = Song.objects.get(id=song_id), False
    except DatabaseError as exc:
        logger.exception(f"Failed to save song {song_id}")
        raise StorageError() from exc

    if created:
        logger.info(f"Song {song_id} saved by user {user.id}")
    return song, created


# ============================================================================
# LIKES
# ============================================================================

def _insert_like(model, **fields) -> bool:
    """
    INSERT a like row, ignoring a duplicate key.

    RETURNS: True if this call inserted the row
    """
    try:
        with transaction.atomic():
            model.objects.create(**fields)
        return True
    except IntegrityError:
        logger.warning(f"Concurrent duplicate {model.__name__} ignored: {fields}")
        return False


def toggle_song_like(user, song_id: str) -> LikeResult:
    """
    Flip (user, song) between Liked and NotLiked.

    ATOMICITY:
    existence check, row write and score change commit together.
    """
    require_user(user)

    try:
        with transaction.atomic():
            if not Song.objects.filter(id=song_id).exists():
                raise NotFound(f"Song {song_id} does not exist")

            deleted, _ = SongLike.objects.filter(user=user, song_id=song_id).delete()
            if deleted:
                trending.on_unlike(song_id)
            elif _insert_like(SongLike, user=user, song_id=song_id):
                trending.on_like(song_id)

        # Read back after commit - authoritative even under a race
        liked = SongLike.objects.filter(user=user, song_id=song_id).exists()
        count = SongLike.objects.filter(song_id=song_id).count()
    except DatabaseError as exc:
        logger.exception(f"Failed to toggle like of song {song_id} for user {user.id}")
        raise StorageError() from exc

    logger.info(f"User {user.id} {'liked' if liked else 'unliked'} song {song_id}")
    return LikeResult(liked=liked, count=count)


def toggle_comment_like(user, comment_id: int) -> LikeResult:
    """Same shape as toggle_song_like, no trending side effect."""
    require_user(user)

    try:
        with transaction.atomic():
            if not Comment.objects.filter(id=comment_id).exists():
                raise NotFound(f"Comment {comment_id} does not exist")

            deleted, _ = CommentLike.objects.filter(user=user, comment_id=comment_id).delete()
            if not deleted:
                _insert_like(CommentLike, user=user, comment_id=comment_id)

        liked = CommentLike.objects.filter(user=user, comment_id=comment_id).exists()
        count = CommentLike.objects.filter(comment_id=comment_id).count()
    except DatabaseError as exc:
        logger.exception(f"Failed to toggle like of comment {comment_id} for user {user.id}")
        raise StorageError() from exc

    return LikeResult(liked=liked, count=count)


# ============================================================================
# COMMENTS
# ============================================================================

def validate_comment_content(content) -> str:
    content = (content or '').strip()
    if not content:
        raise InvalidInput('Comment cannot be empty.')
    if len(content) > COMMENT_MAX_LENGTH:
        raise InvalidInput(f'Comment cannot be longer than {COMMENT_MAX_LENGTH} characters.')
    return content


def add_comment(user, song_id: str, content: str, parent_id: Optional[int] = None) -> CommentNode:
    """
    Add a top-level comment, or a reply when parent_id is given.

    OPERATION:
    1. Reject anonymous callers, then validate content
    2. Verify song exists and parent (if any) is a comment on the same song
    3. INSERT the comment and bump the song's trending score, atomically

    RETURNS: the new comment as a tree node with 0 likes and no replies
    """
    require_user(user)
    content = validate_comment_content(content)

    try:
        with transaction.atomic():
            if not Song.objects.filter(id=song_id).exists():
                raise NotFound(f"Song {song_id} does not exist")

            if parent_id is not None:
                parent = Comment.objects.filter(id=parent_id).only('id', 'song_id').first()
                if parent is None:
                    raise NotFound(f"Parent comment {parent_id} does not exist")
                if parent.song_id != song_id:
                    raise InvalidInput('Parent comment must belong to the same song.')

            comment = Comment.objects.create(
                song_id=song_id,
                author=user,
                parent_id=parent_id,
                content=content,
            )
            trending.on_comment_added(song_id)

        # Fresh row with the same annotations the read path uses
        comment = with_comment_stats(Comment.objects.filter(id=comment.id), user).get()
    except DatabaseError as exc:
        logger.exception(f"Failed to add comment on song {song_id} for user {user.id}")
        raise StorageError() from exc

    logger.info(
        f"User {user.id} added comment {comment.id} on song {song_id}"
        + (f" (reply to {parent_id})" if parent_id is not None else "")
    )
    return {'comment': comment, 'replies': [], 'reply_count': 0}


def delete_comment(user, comment_id: int) -> dict:
    """
    Delete a comment, its whole reply subtree and all their likes.

    Only the author may delete. NotFound and PermissionDenied are distinct.

    The trending score is decremented ONCE, not once per cascaded reply.

    RETURNS: {'song_id': ..., 'deleted': number of comment rows removed}
    """
    require_user(user)

    try:
        with transaction.atomic():
            comment = (
                Comment.objects
                .select_for_update()
                .filter(id=comment_id)
                .only('id', 'song_id', 'author_id')
                .first()
            )
            if comment is None:
                raise NotFound(f"Comment {comment_id} does not exist")
            if comment.author_id != user.id:
                raise PermissionDenied('Only the author can delete this comment.')

            song_id = comment.song_id
            _, per_model = comment.delete()
            trending.on_comment_deleted(song_id)
    except DatabaseError as exc:
        logger.exception(f"Failed to delete comment {comment_id} for user {user.id}")
        raise StorageError() from exc

    deleted = per_model.get(Comment._meta.label, 0)
    logger.info(f"User {user.id} deleted comment {comment_id} ({deleted} rows) on song {song_id}")
    return {'song_id': song_id, 'deleted': deleted}
