"""
Catalog collaborator helpers.

The catalog search itself is an external service. This module holds the
two pieces the app needs on its side of that boundary:

- TokenCache: the access token for the catalog API, refreshed on expiry.
  One instance is created per lookup client and injected into it, instead
  of a bare module-level variable.
- track_to_song_fields: maps a catalog track payload onto Song fields.
"""

import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN_SECONDS = 60


class TokenCache:
    """
    {token, expires_at} with refresh-on-expiry.

    `refresher` is called with no arguments and returns
    (access_token, expires_in_seconds). The token is treated as expired
    `safety_margin` seconds before it really expires.
    """

    def __init__(self, refresher: Callable[[], tuple[str, int]], safety_margin: Optional[int] = None):
        if safety_margin is None:
            safety_margin = getattr(
                settings, 'CATALOG_TOKEN_SAFETY_MARGIN', DEFAULT_SAFETY_MARGIN_SECONDS
            )
        self._refresher = refresher
        self._margin = timedelta(seconds=safety_margin)
        self._lock = threading.Lock()
        self.token: Optional[str] = None
        self.expires_at = None

    def is_valid(self, now=None) -> bool:
        if self.token is None or self.expires_at is None:
            return False
        now = now or timezone.now()
        return now < self.expires_at - self._margin

    def get(self, now=None) -> str:
        """Cached token, or a fresh one if the cached token is (nearly) expired."""
        with self._lock:
            if self.is_valid(now):
                return self.token
            return self._refresh(now)

    def invalidate(self) -> None:
        with self._lock:
            self.token = None
            self.expires_at = None

    def _refresh(self, now=None) -> str:
        # Clear first: a failed refresh must not leave a stale token behind
        self.token = None
        self.expires_at = None

        token, expires_in = self._refresher()
        now = now or timezone.now()
        self.token = token
        self.expires_at = now + timedelta(seconds=int(expires_in))
        logger.info(f"Catalog token refreshed, expires at {self.expires_at.isoformat()}")
        return token


def track_to_song_fields(track: dict) -> dict:
    """
    Catalog track payload -> fields accepted by services.save_song.

    Expected shape (Spotify-style):
        {id, name, artists: [{name}], album: {name, images: [{url}]},
         external_urls: {spotify}}
    Missing optional parts become None.
    """
    artists = [a.get('name') for a in track.get('artists') or [] if a.get('name')]
    album = track.get('album') or {}
    images = album.get('images') or []
    external_urls = track.get('external_urls') or {}

    return {
        'id': track.get('id'),
        'name': track.get('name'),
        'artist': ', '.join(artists) or None,
        'album': album.get('name') or None,
        'cover_url': images[0].get('url') if images else None,
        'external_url': external_urls.get('spotify') or None,
    }
