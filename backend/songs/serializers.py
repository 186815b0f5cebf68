"""
DRF Serializers
===============

Serializers handle:
1. Validation of incoming data
2. Transformation of annotated model instances to JSON
3. Nested comment tree serialization

The wire format uses the field names the web client reads
(camelCase: hasMore, totalCount, currentUserLiked, ...).

DESIGN DECISIONS:
-----------------
1. Comment trees are pre-built by queries.build_comment_tree; serializers
   never touch the database
2. Counts come from queryset annotations, never from related managers
"""

from rest_framework import serializers

from .models import COMMENT_MAX_LENGTH
from .queries import (
    SORT_CHOICES, SORT_TOP, DEFAULT_COMMENT_PAGE_SIZE, DEFAULT_SONG_PAGE_SIZE, user_summary,
)


class UserSummarySerializer(serializers.Serializer):
    """Minimal user representation for embedding in other objects."""
    id = serializers.IntegerField()
    name = serializers.CharField()
    image = serializers.CharField(allow_null=True)


class SongSerializer(serializers.Serializer):
    """
    A song with the stats attached by queries.with_song_stats.

    Plain Serializer, the stats are annotations, not model fields.
    """
    id = serializers.CharField()
    name = serializers.CharField()
    artist = serializers.CharField(allow_null=True)
    album = serializers.CharField(allow_null=True)
    coverUrl = serializers.CharField(source='cover_url', allow_null=True)
    externalUrl = serializers.CharField(source='external_url', allow_null=True)
    addedAt = serializers.DateTimeField(source='added_at')
    trendingScore = serializers.FloatField(source='trending_score')
    likeCount = serializers.IntegerField(source='like_count', default=0)
    commentCount = serializers.IntegerField(source='comment_count', default=0)
    userHasLiked = serializers.BooleanField(source='user_has_liked', default=False)


class SongPageSerializer(serializers.Serializer):
    songs = SongSerializer(many=True)
    limit = serializers.IntegerField()
    offset = serializers.IntegerField()
    hasMore = serializers.BooleanField(source='has_more')
    nextOffset = serializers.IntegerField(source='next_offset', allow_null=True)


class SongSaveSerializer(serializers.Serializer):
    """
    Input for saving a catalog track.

    Only id and name are required; the id format is not validated.
    """
    id = serializers.CharField(max_length=255)
    name = serializers.CharField(max_length=500)
    artist = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    album = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    cover_url = serializers.URLField(max_length=1000, required=False, allow_blank=True, allow_null=True)
    external_url = serializers.URLField(max_length=1000, required=False, allow_blank=True, allow_null=True)


class CommentNodeSerializer(serializers.Serializer):
    """
    Serializer for one node of a pre-built comment tree.

    Structure:
    {
        "id", "content", "createdAt", "parentId",
        "user": {id, name, image},
        "likes", "currentUserLiked", "replyCount",
        "replies": [ ...nested CommentNodeSerializer... ]
    }
    """
    id = serializers.IntegerField(source='comment.id')
    content = serializers.CharField(source='comment.content')
    createdAt = serializers.DateTimeField(source='comment.created_at')
    parentId = serializers.IntegerField(source='comment.parent_id', allow_null=True)
    user = serializers.SerializerMethodField()
    likes = serializers.IntegerField(source='comment.like_count', default=0)
    currentUserLiked = serializers.BooleanField(source='comment.current_user_liked', default=False)
    replyCount = serializers.IntegerField(source='reply_count')
    replies = serializers.SerializerMethodField()

    def get_user(self, obj):
        return UserSummarySerializer(user_summary(obj['comment'].author)).data

    def get_replies(self, obj):
        """Recursively serialize replies."""
        return CommentNodeSerializer(obj['replies'], many=True).data


class CommentPageSerializer(serializers.Serializer):
    comments = CommentNodeSerializer(many=True)
    hasMore = serializers.BooleanField(source='has_more')
    totalCount = serializers.IntegerField(source='total_count')


class CommentCreateSerializer(serializers.Serializer):
    """
    Input for adding a comment or reply.

    Content is trimmed; services.add_comment re-checks it for non-HTTP callers.
    """
    content = serializers.CharField(max_length=COMMENT_MAX_LENGTH, trim_whitespace=True)
    parentId = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Comment cannot be empty.")
        return value.strip()


class CommentPageQuerySerializer(serializers.Serializer):
    """Query params for comment and reply pages."""
    sort = serializers.ChoiceField(choices=SORT_CHOICES, default=SORT_TOP)
    limit = serializers.IntegerField(default=DEFAULT_COMMENT_PAGE_SIZE, min_value=1)
    offset = serializers.IntegerField(default=0, min_value=0)


class LikeResultSerializer(serializers.Serializer):
    liked = serializers.BooleanField()
    count = serializers.IntegerField()


class SongPageQuerySerializer(serializers.Serializer):
    """Query params for song lists (trending, liked songs)."""
    limit = serializers.IntegerField(default=DEFAULT_SONG_PAGE_SIZE, min_value=1)
    offset = serializers.IntegerField(default=0, min_value=0)
