"""
DRF Views
=========

API endpoints for songs, likes, comments and trending.

AUTHENTICATION NOTE:
--------------------
Identity comes from the session set up by the external identity provider.
Mutations require an authenticated user; reads are public and personalised
(userHasLiked / currentUserLiked) when a user is present.

READ FAILURES:
--------------
Read endpoints never surface a storage failure as a bare 5xx. They answer
with an empty page plus an "error" message so the client keeps rendering.
"""

import logging
from datetime import timedelta

from django.conf import settings
from rest_framework import status, permissions
from rest_framework.views import APIView
from rest_framework.response import Response

from .catalog import track_to_song_fields
from .exceptions import InvalidInput, StorageError
from .queries import (
    fetch_comment_page,
    fetch_replies,
    get_liked_songs,
    get_liked_songs_for_user,
    get_song_with_stats,
)
from .serializers import (
    CommentCreateSerializer,
    CommentNodeSerializer,
    CommentPageQuerySerializer,
    CommentPageSerializer,
    LikeResultSerializer,
    SongPageQuerySerializer,
    SongPageSerializer,
    SongSaveSerializer,
    SongSerializer,
)
from .services import (
    add_comment,
    delete_comment,
    save_song,
    toggle_comment_like,
    toggle_song_like,
)
from .trending import decay_trending_scores, get_trending_songs

logger = logging.getLogger(__name__)


def _page_params(request, serializer_class=CommentPageQuerySerializer):
    params = serializer_class(data=request.query_params)
    params.is_valid(raise_exception=True)
    return params.validated_data


def _empty_comment_page(exc: StorageError) -> Response:
    return Response(
        {'comments': [], 'hasMore': False, 'totalCount': 0, 'error': exc.message},
        status=exc.status_code
    )


def _empty_song_page(exc: StorageError, limit, offset) -> Response:
    return Response(
        {
            'songs': [],
            'limit': limit,
            'offset': offset,
            'hasMore': False,
            'nextOffset': None,
            'error': exc.message,
        },
        status=exc.status_code
    )


class SongSaveView(APIView):
    """
    POST /api/songs/

    Save a catalog track. Idempotent - 201 on first save, 200 afterwards.

    Body: flat song fields, or {"track": <raw catalog track payload>}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        data = request.data
        if isinstance(data.get('track'), dict):
            data = track_to_song_fields(data['track'])

        serializer = SongSaveSerializer(data=data)
        serializer.is_valid(raise_exception=True)

        song, created = save_song(request.user, serializer.validated_data)
        song = get_song_with_stats(song.id, request.user)
        return Response(
            SongSerializer(song).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )


class SongDetailView(APIView):
    """
    GET /api/songs/<song_id>/

    Song with likeCount, commentCount and userHasLiked.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, song_id):
        song = get_song_with_stats(song_id, request.user)
        return Response(SongSerializer(song).data)


class SongLikeView(APIView):
    """
    POST /api/songs/<song_id>/like/

    Toggle like on a song.

    Returns: {"liked": bool, "count": int}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, song_id):
        result = toggle_song_like(request.user, song_id)
        return Response(LikeResultSerializer(result.as_dict()).data)


class SongCommentsView(APIView):
    """
    GET  /api/songs/<song_id>/comments/?sort=top|recent&limit=10&offset=0
    POST /api/songs/<song_id>/comments/

    GET returns {comments: [tree roots], hasMore, totalCount}.
    POST body: {"content": "...", "parentId": 123 (optional, for replies)}
    """

    def get_permissions(self):
        if self.request.method == 'POST':
            return [permissions.IsAuthenticated()]
        return [permissions.AllowAny()]

    def get(self, request, song_id):
        params = _page_params(request)
        try:
            page = fetch_comment_page(
                song_id,
                sort_by=params['sort'],
                limit=params['limit'],
                offset=params['offset'],
                viewer=request.user
            )
        except StorageError as exc:
            return _empty_comment_page(exc)
        return Response(CommentPageSerializer(page).data)

    def post(self, request, song_id):
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        node = add_comment(
            request.user,
            song_id,
            serializer.validated_data['content'],
            parent_id=serializer.validated_data.get('parentId')
        )
        return Response(CommentNodeSerializer(node).data, status=status.HTTP_201_CREATED)


class CommentDetailView(APIView):
    """
    DELETE /api/comments/<comment_id>/

    Author only. Removes the whole reply subtree.
    """
    permission_classes = [permissions.IsAuthenticated]

    def delete(self, request, comment_id):
        result = delete_comment(request.user, comment_id)
        return Response({'deleted': result['deleted'], 'songId': result['song_id']})


class CommentLikeView(APIView):
    """
    POST /api/comments/<comment_id>/like/

    Toggle like on a comment.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, comment_id):
        result = toggle_comment_like(request.user, comment_id)
        return Response(LikeResultSerializer(result.as_dict()).data)


class CommentRepliesView(APIView):
    """
    GET /api/comments/<comment_id>/replies/?limit=10&offset=0

    Direct replies, oldest first, each with its subtree.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, comment_id):
        params = _page_params(request)
        try:
            page = fetch_replies(
                comment_id,
                limit=params['limit'],
                offset=params['offset'],
                viewer=request.user
            )
        except StorageError as exc:
            return _empty_comment_page(exc)
        return Response(CommentPageSerializer(page).data)


class TrendingView(APIView):
    """
    GET /api/trending/?limit=20&offset=0

    QUERY:
    Single ORDER BY trending_score DESC using the index on trending_score
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        params = _page_params(request, SongPageQuerySerializer)
        try:
            page = get_trending_songs(params['limit'], params['offset'], viewer=request.user)
        except StorageError as exc:
            return _empty_song_page(exc, params['limit'], params['offset'])
        return Response(SongPageSerializer(page).data)


class LikedSongsView(APIView):
    """
    GET /api/likes/?limit=20&offset=0

    The caller's liked songs, newest like first.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        params = _page_params(request, SongPageQuerySerializer)
        try:
            page = get_liked_songs(request.user, params['limit'], params['offset'])
        except StorageError as exc:
            return _empty_song_page(exc, params['limit'], params['offset'])
        return Response(SongPageSerializer(page).data)


class UserLikedSongsView(APIView):
    """
    GET /api/users/<user_id>/likes/?limit=20&offset=0

    Another user's liked songs; userHasLiked is from the viewer's side.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        params = _page_params(request, SongPageQuerySerializer)
        try:
            page = get_liked_songs_for_user(
                user_id,
                viewer=request.user,
                limit=params['limit'],
                offset=params['offset']
            )
        except StorageError as exc:
            return _empty_song_page(exc, params['limit'], params['offset'])
        return Response(SongPageSerializer(page).data)


class DecayCronView(APIView):
    """
    GET /api/cron/decay/

    Daily decay job, invoked by the external scheduler.

    When CRON_SECRET is configured the scheduler must send
    "Authorization: Bearer <CRON_SECRET>".

    Optional ?min_interval_hours=N skips songs decayed in the last N hours.
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = []

    def get(self, request):
        secret = getattr(settings, 'CRON_SECRET', None)
        if secret and request.headers.get('Authorization') != f'Bearer {secret}':
            logger.warning("Rejected decay job call with a bad or missing cron secret")
            return Response(
                {'success': False, 'error': 'Unauthorized.'},
                status=status.HTTP_401_UNAUTHORIZED
            )

        min_interval = None
        raw_hours = request.query_params.get('min_interval_hours')
        if raw_hours:
            try:
                min_interval = timedelta(hours=float(raw_hours))
            except ValueError:
                raise InvalidInput('min_interval_hours must be a number.')

        logger.info("Running daily decay job for trending scores...")
        try:
            updated = decay_trending_scores(min_interval=min_interval)
        except StorageError as exc:
            return Response(
                {'success': False, 'error': exc.message},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        return Response({'success': True, 'updated': updated})
