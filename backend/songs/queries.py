"""
Read Path: Comment Pages, Reply Trees and Song Lists
=====================================================

This module contains the query functions behind every read the app serves.

COMMENT PAGES WITHOUT N+1:
--------------------------
Naive approach for a page of 10 threads:
    for comment in top_level_page:              # 1 query
        comment.replies.all()                   # 10 queries
            for reply in ...: reply.replies...  # 10 * depth more

OUR APPROACH (4 queries per page, regardless of thread depth):
1. COUNT the song's top-level comments (drives hasMore / totalCount)
2. SELECT the page of top-level comments, ordered by likes or recency
3. WITH RECURSIVE closure over parent_id collects every descendant id
4. SELECT those descendants with their live like counts
5. Link children to parents in Python with a single O(n) pass

Pagination math only ever looks at top-level comments; replies ride along
with their root and never shift the page window.
"""

import logging
from typing import Optional, TypedDict

from django.db import connection, DatabaseError
from django.db.models import (
    BooleanField, Count, Exists, IntegerField, OuterRef, Subquery, Value,
)
from django.db.models.functions import Coalesce
from django.contrib.auth.models import User

from .exceptions import InvalidInput, NotFound, StorageError
from .models import Comment, CommentLike, Profile, Song, SongLike

logger = logging.getLogger(__name__)

SORT_TOP = 'top'
SORT_RECENT = 'recent'
SORT_CHOICES = (SORT_TOP, SORT_RECENT)

DEFAULT_COMMENT_PAGE_SIZE = 10
DEFAULT_SONG_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50


class CommentNode(TypedDict):
    """One comment and its (already linked) replies."""
    comment: Comment
    replies: list
    reply_count: int


class CommentPage(TypedDict):
    comments: list[CommentNode]
    has_more: bool
    total_count: int


class SongPage(TypedDict):
    songs: list[Song]
    limit: int
    offset: int
    has_more: bool
    next_offset: Optional[int]


# ============================================================================
# HELPERS
# ============================================================================

def viewer_id(viewer) -> Optional[int]:
    """Id of an authenticated viewer, None for anonymous or missing."""
    if viewer is None or not getattr(viewer, 'is_authenticated', False):
        return None
    return viewer.id


def clamp_page(limit, offset, default=DEFAULT_COMMENT_PAGE_SIZE) -> tuple[int, int]:
    """Coerce limit into 1..MAX_PAGE_SIZE and offset into >= 0."""
    try:
        limit = int(limit) if limit is not None else default
        offset = int(offset) if offset is not None else 0
    except (TypeError, ValueError):
        raise InvalidInput('limit and offset must be integers.')
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


def user_summary(user: User) -> dict:
    """
    The {id, name, image} view of a user the identity provider supplied.

    Falls back to the full name, then the username, when no display name
    was stored.
    """
    try:
        profile = user.profile
    except Profile.DoesNotExist:
        profile = None

    name = (profile.display_name if profile else '') or user.get_full_name() or user.username
    image = (profile.image_url if profile else '') or None
    return {'id': user.id, 'name': name, 'image': image}


def _count_of(model, field: str):
    """Correlated COUNT(*) of `model` rows pointing at the outer row."""
    counts = (
        model.objects
        .filter(**{field: OuterRef('pk')})
        .order_by()
        .values(field)
        .annotate(n=Count('pk'))
        .values('n')[:1]
    )
    return Coalesce(Subquery(counts, output_field=IntegerField()), Value(0))


# ============================================================================
# SONGS
# ============================================================================

def with_song_stats(queryset, viewer=None):
    """
    Attach like_count, comment_count and user_has_liked to each song.

    Correlated subqueries instead of JOIN + GROUP BY: likes x comments would
    otherwise multiply the joined rows.
    """
    uid = viewer_id(viewer)
    if uid is None:
        liked = Value(False, output_field=BooleanField())
    else:
        liked = Exists(SongLike.objects.filter(song=OuterRef('pk'), user_id=uid))

    return queryset.annotate(
        like_count=_count_of(SongLike, 'song'),
        comment_count=_count_of(Comment, 'song'),
        user_has_liked=liked,
    )


def get_song_with_stats(song_id: str, viewer=None) -> Song:
    try:
        song = with_song_stats(Song.objects.filter(id=song_id), viewer).first()
    except DatabaseError as exc:
        logger.exception(f"Failed to fetch song {song_id}")
        raise StorageError() from exc
    if song is None:
        raise NotFound(f"Song {song_id} does not exist")
    return song


def _liked_songs_page(owner_id: int, viewer, limit: int, offset: int) -> SongPage:
    """Songs `owner_id` liked, newest like first, stats from `viewer`'s side."""
    try:
        # limit + 1 tells us whether another page exists without a COUNT
        song_ids = list(
            SongLike.objects
            .filter(user_id=owner_id)
            .order_by('-liked_at', '-id')
            .values_list('song_id', flat=True)[offset:offset + limit + 1]
        )
        has_more = len(song_ids) > limit
        song_ids = song_ids[:limit]

        by_id = {
            song.id: song
            for song in with_song_stats(Song.objects.filter(id__in=song_ids), viewer)
        }
    except DatabaseError as exc:
        logger.exception(f"Failed to fetch liked songs of user {owner_id}")
        raise StorageError() from exc

    songs = [by_id[song_id] for song_id in song_ids if song_id in by_id]

    return {
        'songs': songs,
        'limit': limit,
        'offset': offset,
        'has_more': has_more,
        'next_offset': offset + len(songs) if has_more else None,
    }


def get_liked_songs(user, limit=DEFAULT_SONG_PAGE_SIZE, offset=0) -> SongPage:
    """The caller's own liked songs. user_has_liked is true for all of them."""
    limit, offset = clamp_page(limit, offset, DEFAULT_SONG_PAGE_SIZE)
    return _liked_songs_page(user.id, user, limit, offset)


def get_liked_songs_for_user(
    profile_user_id: int,
    viewer=None,
    limit=DEFAULT_SONG_PAGE_SIZE,
    offset=0
) -> SongPage:
    """
    Another user's liked songs, as seen by `viewer`.

    user_has_liked reflects the viewer, not the profile owner.
    """
    if not User.objects.filter(id=profile_user_id).exists():
        raise NotFound(f"User {profile_user_id} does not exist")
    limit, offset = clamp_page(limit, offset, DEFAULT_SONG_PAGE_SIZE)
    return _liked_songs_page(profile_user_id, viewer, limit, offset)


# ============================================================================
# COMMENTS
# ============================================================================

def with_comment_stats(queryset, viewer=None):
    """
    Attach like_count and current_user_liked to each comment.

    Anonymous viewers always get current_user_liked = False.
    """
    uid = viewer_id(viewer)
    if uid is None:
        liked = Value(False, output_field=BooleanField())
    else:
        liked = Exists(CommentLike.objects.filter(comment=OuterRef('pk'), user_id=uid))

    return (
        queryset
        .select_related('author__profile')
        .annotate(
            like_count=Count('likes'),
            current_user_liked=liked,
        )
    )


def count_top_level_comments(song_id: str) -> int:
    return Comment.objects.filter(song_id=song_id, parent__isnull=True).count()


def get_top_level_page(song_id: str, sort_by: str, limit: int, offset: int, viewer=None) -> list[Comment]:
    """
    One page of top-level comments.

    top:    live like count DESC, then created_at DESC
    recent: created_at DESC
    id breaks exact timestamp ties so pages never overlap.
    """
    queryset = with_comment_stats(
        Comment.objects.filter(song_id=song_id, parent__isnull=True),
        viewer
    )
    if sort_by == SORT_TOP:
        queryset = queryset.order_by('-like_count', '-created_at', '-id')
    else:
        queryset = queryset.order_by('-created_at', '-id')
    return list(queryset[offset:offset + limit])


def collect_descendant_ids(root_ids) -> list[int]:
    """
    Every comment below `root_ids`, at any depth, in ONE query.

    WITH RECURSIVE is supported by both PostgreSQL and SQLite.
    The roots themselves are not included.
    """
    root_ids = list(root_ids)
    if not root_ids:
        return []

    table = connection.ops.quote_name(Comment._meta.db_table)
    placeholders = ', '.join(['%s'] * len(root_ids))
    sql = f"""
        WITH RECURSIVE thread(id) AS (
            SELECT id FROM {table} WHERE parent_id IN ({placeholders})
            UNION ALL
            SELECT c.id FROM {table} c
            INNER JOIN thread t ON c.parent_id = t.id
        )
        SELECT id FROM thread
    """

    with connection.cursor() as cursor:
        cursor.execute(sql, root_ids)
        return [row[0] for row in cursor.fetchall()]


def build_comment_tree(roots: list[Comment], descendants: list[Comment]) -> list[CommentNode]:
    """
    Link a flat list of descendants under their roots.

    Algorithm: O(n log n) for the sort, then O(n) single pass with a hash map

    1. Create lookup dict {id -> node} for roots and descendants
    2. Walk descendants oldest-first, appending each to its parent's replies

    Because descendants are visited in created_at order, every replies list
    ends up oldest-first. Roots keep the order they were given in.
    """
    nodes: dict[int, CommentNode] = {}
    for comment in roots:
        nodes[comment.id] = {'comment': comment, 'replies': [], 'reply_count': 0}

    ordered = sorted(descendants, key=lambda c: (c.created_at, c.id))
    for comment in ordered:
        nodes[comment.id] = {'comment': comment, 'replies': [], 'reply_count': 0}

    for comment in ordered:
        parent_node = nodes.get(comment.parent_id)
        if parent_node is None:
            # Parent deleted between the closure query and this fetch
            logger.debug(f"Dropping orphan comment {comment.id} (parent {comment.parent_id})")
            continue
        parent_node['replies'].append(nodes[comment.id])
        parent_node['reply_count'] += 1

    return [nodes[comment.id] for comment in roots]


def _expand(roots: list[Comment], viewer) -> list[CommentNode]:
    descendant_ids = collect_descendant_ids(c.id for c in roots)
    descendants = []
    if descendant_ids:
        descendants = list(
            with_comment_stats(Comment.objects.filter(id__in=descendant_ids), viewer)
        )
    return build_comment_tree(roots, descendants)


def fetch_comment_page(
    song_id: str,
    sort_by: str = SORT_TOP,
    limit=DEFAULT_COMMENT_PAGE_SIZE,
    offset=0,
    viewer=None
) -> CommentPage:
    """
    Main entry point: one page of a song's threads, fully expanded.

    TOTAL QUERIES: 4 (count, page, closure, descendants)

    total_count counts top-level comments only, independent of the window.
    has_more is offset + len(page) < total_count.
    """
    if sort_by not in SORT_CHOICES:
        raise InvalidInput(f"sortBy must be one of: {', '.join(SORT_CHOICES)}")
    limit, offset = clamp_page(limit, offset)

    try:
        total_count = count_top_level_comments(song_id)
        roots = get_top_level_page(song_id, sort_by, limit, offset, viewer)
        comments = _expand(roots, viewer)
    except DatabaseError as exc:
        logger.exception(f"Failed to fetch comments for song {song_id}")
        raise StorageError() from exc

    return {
        'comments': comments,
        'has_more': offset + len(roots) < total_count,
        'total_count': total_count,
    }


def fetch_replies(
    comment_id: int,
    limit=DEFAULT_COMMENT_PAGE_SIZE,
    offset=0,
    viewer=None
) -> CommentPage:
    """
    One page of a comment's direct replies, oldest first.

    Each reply comes back with its own subtree expanded. total_count is the
    number of direct replies only.
    """
    limit, offset = clamp_page(limit, offset)

    try:
        if not Comment.objects.filter(id=comment_id).exists():
            raise NotFound(f"Comment {comment_id} does not exist")

        direct = Comment.objects.filter(parent_id=comment_id)
        total_count = direct.count()
        roots = list(
            with_comment_stats(direct, viewer)
            .order_by('created_at', 'id')[offset:offset + limit]
        )
        comments = _expand(roots, viewer)
    except DatabaseError as exc:
        logger.exception(f"Failed to fetch replies for comment {comment_id}")
        raise StorageError() from exc

    return {
        'comments': comments,
        'has_more': offset + len(roots) < total_count,
        'total_count': total_count,
    }
