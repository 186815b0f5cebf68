"""
Songs App Configuration
"""
from django.apps import AppConfig


class SongsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'songs'

    def ready(self):
        # Import signals when app is ready
        import songs.signals  # noqa
