"""
Data Models for MusicGrid
=========================

Design Philosophy:
------------------
1. Songs are keyed by the catalog's own track id (a string)
   - Saving the same track twice is a no-op, the primary key makes it so
   - Songs are never deleted in normal operation

2. Likes use two explicit tables (SongLike, CommentLike)
   - One row per (user, target), enforced by a UniqueConstraint
   - Counts are never stored, always counted live from these tables

3. Comments use Adjacency List pattern (parent_id FK)
   - Tree assembly happens in Python after a single closure query
   - Deleting a comment cascades to its replies and to all their likes

4. trending_score is the one mutable aggregate
   - Incremented on like/comment, decremented (clamped at 0) on unlike/delete
   - Halved for every song by the periodic decay tick
   - Read path is a plain ORDER BY trending_score DESC

Indexes Strategy:
-----------------
- song.trending_score: For the trending page ordering
- comment.song_id + comment.parent_id + comment.created_at: Top-level pages
- comment.parent_id + comment.created_at: Reply expansion, oldest first
- songlike.song_id / commentlike.comment_id: For live counts
"""

from django.db import models
from django.contrib.auth.models import User
from django.utils import timezone


class Profile(models.Model):
    """
    Display identity for a user as supplied by the identity provider.

    Created automatically with the User (see signals.py).
    """
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='profile'
    )
    display_name = models.CharField(max_length=150, blank=True)
    image_url = models.URLField(max_length=500, blank=True)

    def __str__(self):
        return self.display_name or self.user.username


class Song(models.Model):
    """
    A track saved from the external catalog.

    The primary key is the catalog-assigned id; its format is not validated.
    """
    id = models.CharField(max_length=255, primary_key=True)
    name = models.CharField(max_length=500)
    artist = models.CharField(max_length=500, blank=True, null=True, db_index=True)
    album = models.CharField(max_length=500, blank=True, null=True)
    cover_url = models.URLField(max_length=1000, blank=True, null=True)
    external_url = models.URLField(max_length=1000, blank=True, null=True)
    added_at = models.DateTimeField(default=timezone.now)

    # Mutated only by trending.py - never negative
    trending_score = models.FloatField(default=0.0, db_index=True)
    last_decayed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-trending_score', '-added_at']
        indexes = [
            models.Index(fields=['name'], name='songs_song_name_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(trending_score__gte=0),
                name='song_trending_score_non_negative'
            )
        ]

    def __str__(self):
        if self.artist:
            return f"{self.name} - {self.artist}"
        return self.name


class SongLike(models.Model):
    """
    "User likes song". Created and destroyed by toggle, never updated.
    """
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='song_likes'
    )
    song = models.ForeignKey(
        Song,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    liked_at = models.DateTimeField(default=timezone.now)

    class Meta:
        # CRITICAL: at most one like per (user, song), even under concurrent toggles
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'song'],
                name='unique_like_per_user_per_song'
            )
        ]
        indexes = [
            models.Index(fields=['song'], name='songs_songl_song_idx'),
            # "Songs I liked", newest first
            models.Index(fields=['user', '-liked_at'], name='songs_songl_user_liked_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} liked {self.song_id}"


class Comment(models.Model):
    """
    Threaded comment on a song.

    parent=None means a top-level comment, the unit of pagination.
    Replies may be replied to, so the tree depth is unbounded.
    """
    song = models.ForeignKey(
        Song,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='song_comments'
    )
    # A reply is meaningless without its parent, so deletes cascade down the thread
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies'
    )
    content = models.TextField()
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['created_at']  # Oldest first within a thread
        indexes = [
            models.Index(fields=['song', 'parent', 'created_at'], name='songs_comme_song_thread_idx'),
            models.Index(fields=['parent', 'created_at'], name='songs_comme_parent_idx'),
        ]

    def __str__(self):
        return f"Comment by {self.author.username} on {self.song_id}"

    @property
    def is_reply(self):
        return self.parent_id is not None


class CommentLike(models.Model):
    """Same one-row-per-pair shape as SongLike, scoped to comments."""
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comment_likes'
    )
    comment = models.ForeignKey(
        Comment,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'comment'],
                name='unique_like_per_user_per_comment'
            )
        ]
        indexes = [
            models.Index(fields=['comment'], name='songs_comml_comment_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} liked comment {self.comment_id}"


# ============================================================================
# TRENDING & COMMENT CONSTANTS
# ============================================================================
# Centralized for easy adjustment and testing
TRENDING_LIKE_WEIGHT = 1.0
TRENDING_COMMENT_WEIGHT = 0.1
# Scores at or below this are left alone by the decay tick
TRENDING_DECAY_EPSILON = 0.01
COMMENT_MAX_LENGTH = 1000
