"""
Catalog access bound to the logged-in user's credential.

AuthorizedCatalog applies the one consumption rule every catalog caller
follows:

    1. get a valid token right before the call (refreshing if stale)
    2. call the catalog
    3. on 401, refresh once and retry once
    4. anything else (or a second 401) propagates

A 401 on a token that looked valid happens when the token was revoked
server-side or the clock is off; one refresh settles both.
"""

from typing import Any

from sound_share.auth.tokens import TokenLifecycleManager
from sound_share.catalog.client import DEFAULT_MARKET, MusicCatalogClient
from sound_share.catalog.models import UserIdentity
from sound_share.core.exceptions import CatalogRequestFailed, NotAuthenticated
from sound_share.core.logger import get_logger


logger = get_logger(__name__)


class AuthorizedCatalog:
    """
    MusicCatalogClient with the token argument filled in.

    Attributes:
        manager: Token lifecycle manager providing bearer tokens.
        client: Underlying stateless catalog client.
    """

    def __init__(self, manager: TokenLifecycleManager, client: MusicCatalogClient) -> None:
        self.manager = manager
        self.client = client

    def _with_token(self, method: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
        token = self.manager.get_valid_access_token()
        if token is None:
            raise NotAuthenticated("Not logged in. Run 'sound-share login' first.")

        call = getattr(self.client, method)
        try:
            return call(token, *args, **kwargs)
        except CatalogRequestFailed as e:
            if not e.is_unauthorized:
                raise
            logger.info("Spotify rejected the access token, refreshing and retrying once")

        token = self.manager.refresh()
        return call(token, *args, **kwargs)

    def current_identity(self) -> UserIdentity:
        """Fetch the logged-in user's identity from GET /me (never cached)."""
        return UserIdentity.from_spotify_data(self.current_user_profile())

    def current_user_profile(self) -> dict[str, Any]:
        return self._with_token("current_user_profile")

    def current_user_playlists(self, limit: int = 50) -> dict[str, Any]:
        return self._with_token("current_user_playlists", limit=limit)

    def current_user_top_artists(self, limit: int = 20) -> dict[str, Any]:
        return self._with_token("current_user_top_artists", limit=limit)

    def current_user_top_tracks(self, limit: int = 20) -> dict[str, Any]:
        return self._with_token("current_user_top_tracks", limit=limit)

    def current_user_recently_played(self, limit: int = 20) -> dict[str, Any]:
        return self._with_token("current_user_recently_played", limit=limit)

    def search(self, query: str, search_type: str = "track", limit: int = 20) -> dict[str, Any]:
        return self._with_token("search", query, search_type=search_type, limit=limit)

    def track(self, track_id: str) -> dict[str, Any]:
        return self._with_token("track", track_id)

    def album(self, album_id: str) -> dict[str, Any]:
        return self._with_token("album", album_id)

    def album_tracks(self, album_id: str, limit: int = 50) -> dict[str, Any]:
        return self._with_token("album_tracks", album_id, limit=limit)

    def artist(self, artist_id: str) -> dict[str, Any]:
        return self._with_token("artist", artist_id)

    def artist_top_tracks(self, artist_id: str, market: str = DEFAULT_MARKET) -> dict[str, Any]:
        return self._with_token("artist_top_tracks", artist_id, market=market)
