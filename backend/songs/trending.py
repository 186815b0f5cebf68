"""
Trending Score Engine
=====================

Each song carries a float trending_score that rewards recent engagement:

- Song liked:        +TRENDING_LIKE_WEIGHT     (1.0)
- Song unliked:      -TRENDING_LIKE_WEIGHT     (clamped at 0)
- Comment added:     +TRENDING_COMMENT_WEIGHT  (0.1)
- Comment deleted:   -TRENDING_COMMENT_WEIGHT  (clamped at 0)
- Daily decay tick:  score / 2 for every song above TRENDING_DECAY_EPSILON

WHY AN ADDITIVE/HALVING SCORE:
------------------------------
A sliding window ("likes in the last 7 days") needs date arithmetic and an
aggregate over the like table on every trending read. Keeping the score on
the song turns the trending page into:

    SELECT ... FROM songs_song ORDER BY trending_score DESC LIMIT 20

The price is a periodic maintenance job (decay_trending_scores).

ATOMICITY:
----------
The adjust functions do not open their own transaction. They are called
from services.py INSIDE the transaction that writes the like/comment row,
so the row and the score change commit or roll back together.
"""

import logging
from datetime import timedelta
from typing import Optional

from django.db import transaction, DatabaseError
from django.db.models import F, FloatField, Q, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from .exceptions import StorageError
from .models import (
    Song,
    TRENDING_LIKE_WEIGHT,
    TRENDING_COMMENT_WEIGHT,
    TRENDING_DECAY_EPSILON,
)
from .queries import SongPage, clamp_page, with_song_stats, DEFAULT_SONG_PAGE_SIZE

logger = logging.getLogger(__name__)


def _adjust_score(song_id: str, delta: float) -> int:
    """
    Apply `delta` to one song's score in a single UPDATE.

    Decrements go through GREATEST(score + delta, 0) so the score can never
    go negative, no matter how the increments and decrements interleave.
    """
    if delta >= 0:
        new_score = F('trending_score') + delta
    else:
        new_score = Greatest(
            F('trending_score') + delta,
            Value(0.0),
            output_field=FloatField()
        )
    return Song.objects.filter(id=song_id).update(trending_score=new_score)


def on_like(song_id: str) -> None:
    _adjust_score(song_id, TRENDING_LIKE_WEIGHT)


def on_unlike(song_id: str) -> None:
    _adjust_score(song_id, -TRENDING_LIKE_WEIGHT)


def on_comment_added(song_id: str) -> None:
    _adjust_score(song_id, TRENDING_COMMENT_WEIGHT)


def on_comment_deleted(song_id: str) -> None:
    """
    Charged ONCE per delete call, even when the delete cascaded to replies.

    Tunable: charge per removed row instead by calling this once per row.
    """
    _adjust_score(song_id, -TRENDING_COMMENT_WEIGHT)


def decay_trending_scores(min_interval: Optional[timedelta] = None, now=None) -> int:
    """
    Halve the score of every song above the epsilon, in ONE bulk UPDATE.

    Songs at or below TRENDING_DECAY_EPSILON are left untouched so scores
    near zero don't churn forever.

    DOUBLE INVOCATION:
    ------------------
    Without `min_interval`, two overlapping scheduler firings halve twice.
    That at-least-once behaviour is the default. Passing `min_interval`
    skips songs whose last_decayed_at is more recent than that, which turns
    a second firing in the same period into a no-op.

    RETURNS: number of songs updated
    """
    now = now or timezone.now()

    queryset = Song.objects.filter(trending_score__gt=TRENDING_DECAY_EPSILON)
    if min_interval is not None:
        queryset = queryset.filter(
            Q(last_decayed_at__isnull=True) |
            Q(last_decayed_at__lte=now - min_interval)
        )

    try:
        with transaction.atomic():
            updated = queryset.update(
                trending_score=F('trending_score') / 2.0,
                last_decayed_at=now,
            )
    except DatabaseError as exc:
        logger.exception("Decay job failed, no scores were changed")
        raise StorageError() from exc

    logger.info(f"Decay job halved trending scores of {updated} songs")
    return updated


def get_trending_songs(limit=DEFAULT_SONG_PAGE_SIZE, offset=0, viewer=None) -> SongPage:
    """
    Songs by trending_score DESC (newest first on ties), with stats.

    Uses the index on trending_score. One extra row is fetched to decide
    has_more without a COUNT.
    """
    limit, offset = clamp_page(limit, offset, DEFAULT_SONG_PAGE_SIZE)

    try:
        rows = list(
            with_song_stats(Song.objects.all(), viewer)
            .order_by('-trending_score', '-added_at', 'id')[offset:offset + limit + 1]
        )
    except DatabaseError as exc:
        logger.exception("Failed to fetch trending songs")
        raise StorageError() from exc

    has_more = len(rows) > limit
    songs = rows[:limit]
    return {
        'songs': songs,
        'limit': limit,
        'offset': offset,
        'has_more': has_more,
        'next_offset': offset + len(songs) if has_more else None,
    }
