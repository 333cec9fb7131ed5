from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import spotipy
from spotipy.oauth2 import SpotifyClientCredentials

from .errors import UpstreamError
from .throttle import RequestThrottle

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogTrack:
    name: str
    primary_artist: str

    @property
    def search_text(self) -> str:
        return f"{self.name} {self.primary_artist}"


class SpotifyResolver:
    """Looks up Spotify track metadata so the track can be found on YouTube."""

    def __init__(
        self,
        throttle: RequestThrottle,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> None:
        self._throttle = throttle
        client_id = client_id or os.getenv("SPOTIFY_CLIENT_ID")
        client_secret = client_secret or os.getenv("SPOTIFY_CLIENT_SECRET")
        if not client_id or not client_secret:
            log.warning("Spotify credentials not set, Spotify links will not work.")
            self._auth = None
            self._sp = None
            return

        self._auth = SpotifyClientCredentials(
            client_id=client_id, client_secret=client_secret
        )
        self._sp = spotipy.Spotify(auth_manager=self._auth)

    @property
    def available(self) -> bool:
        return self._sp is not None

    async def authenticate(self) -> bool:
        """Run the client-credentials exchange once. Returns True on success."""
        if self._auth is None:
            return False
        try:
            await self._throttle.call(self._auth.get_access_token, as_dict=False)
        except Exception as exc:
            log.warning("Spotify integration failed: %s", exc)
            return False
        log.info("Spotify integration working")
        return True

    async def get_track(self, track_id: str) -> CatalogTrack:
        if self._sp is None:
            raise UpstreamError("Spotify credentials are not configured")
        try:
            track = await self._throttle.call(self._sp.track, track_id)
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Spotify lookup failed for {track_id}: {exc}") from exc
        artists = track.get("artists") or []
        if not track.get("name") or not artists:
            raise UpstreamError(f"Spotify returned incomplete data for {track_id}")
        return CatalogTrack(name=track["name"], primary_artist=artists[0]["name"])
