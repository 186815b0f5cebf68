"""
Django Admin Configuration for Songs Models
"""
from django.contrib import admin
from .models import Profile, Song, SongLike, Comment, CommentLike


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'display_name', 'image_url']
    search_fields = ['user__username', 'display_name']


@admin.register(Song)
class SongAdmin(admin.ModelAdmin):
    list_display = ['name', 'artist', 'album', 'trending_score', 'last_decayed_at', 'added_at']
    list_filter = ['added_at']
    search_fields = ['id', 'name', 'artist', 'album']
    # Scores are owned by the trending engine
    readonly_fields = ['trending_score', 'last_decayed_at', 'added_at']


@admin.register(SongLike)
class SongLikeAdmin(admin.ModelAdmin):
    list_display = ['user', 'song', 'liked_at']
    list_filter = ['liked_at']
    search_fields = ['user__username', 'song__name']
    readonly_fields = ['liked_at']


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'song', 'author', 'parent', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'author__username', 'song__name']
    readonly_fields = ['created_at']


@admin.register(CommentLike)
class CommentLikeAdmin(admin.ModelAdmin):
    list_display = ['user', 'comment', 'created_at']
    list_filter = ['created_at']
    search_fields = ['user__username']
    readonly_fields = ['created_at']
