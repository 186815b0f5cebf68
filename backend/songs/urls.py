"""
Songs App URL Configuration
"""
from django.urls import path
from .views import (
    SongSaveView,
    SongDetailView,
    SongLikeView,
    SongCommentsView,
    CommentDetailView,
    CommentLikeView,
    CommentRepliesView,
    TrendingView,
    LikedSongsView,
    UserLikedSongsView,
    DecayCronView,
)

urlpatterns = [
    # Songs
    path('songs/', SongSaveView.as_view(), name='song-save'),
    path('songs/<str:song_id>/', SongDetailView.as_view(), name='song-detail'),
    path('songs/<str:song_id>/like/', SongLikeView.as_view(), name='song-like'),
    path('songs/<str:song_id>/comments/', SongCommentsView.as_view(), name='song-comments'),

    # Comments
    path('comments/<int:comment_id>/', CommentDetailView.as_view(), name='comment-detail'),
    path('comments/<int:comment_id>/like/', CommentLikeView.as_view(), name='comment-like'),
    path('comments/<int:comment_id>/replies/', CommentRepliesView.as_view(), name='comment-replies'),

    # Song lists
    path('trending/', TrendingView.as_view(), name='trending'),
    path('likes/', LikedSongsView.as_view(), name='liked-songs'),
    path('users/<int:user_id>/likes/', UserLikedSongsView.as_view(), name='user-liked-songs'),

    # Scheduled jobs
    path('cron/decay/', DecayCronView.as_view(), name='cron-decay'),
]
