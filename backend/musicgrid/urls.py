"""
MusicGrid URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'MusicGrid API Server',
        'version': '1.0',
        'endpoints': {
            'songs': '/api/songs/<id>/',
            'comments': '/api/songs/<id>/comments/',
            'like': '/api/songs/<id>/like/',
            'trending': '/api/trending/',
            'likes': '/api/likes/',
        },
        'frontend': 'http://localhost:3000',
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('songs.urls')),
]
