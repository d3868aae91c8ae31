"""
Stateless Spotify Web API client.

MusicCatalogClient wraps spotipy and adds nothing but error translation:
every method takes the bearer token as its first argument, returns the
parsed JSON body and raises CatalogRequestFailed on any non-2xx answer or
transport failure.

The client never retries, not even on 429 or 5xx. spotipy mounts a
retrying adapter on sessions it builds itself, so the client hands it a
plain requests.Session instead; refresh-and-retry on 401 is the caller's
job (see sound_share.catalog.authorized).

Usage:
    from sound_share.catalog.client import MusicCatalogClient

    client = MusicCatalogClient()
    profile = client.current_user_profile(access_token)
"""

from typing import Any, Callable

import requests
import spotipy

from sound_share.core.exceptions import CatalogRequestFailed
from sound_share.core.logger import get_logger


logger = get_logger(__name__)


SEARCH_TYPES = ("track", "album", "artist", "playlist")

DEFAULT_MARKET = "US"


class MusicCatalogClient:
    """
    Thin, stateless wrapper over the Spotify Web API.

    Attributes:
        request_timeout: Seconds before a catalog request gives up.

    Thread Safety:
        A new spotipy.Spotify is built for every call, bound to the token
        passed in. The shared requests.Session is safe for concurrent GETs.

    Example:
        client = MusicCatalogClient(request_timeout=10.0)
        tracks = client.current_user_top_tracks(token, limit=10)
        for item in tracks["items"]:
            print(item["name"])
    """

    def __init__(
        self,
        request_timeout: float = 10.0,
        http: requests.Session | None = None,
        spotify_factory: Callable[..., spotipy.Spotify] = spotipy.Spotify
    ) -> None:
        self.request_timeout = request_timeout
        self._http = http or requests.Session()
        self._spotify_factory = spotify_factory

    def _spotify(self, token: str) -> spotipy.Spotify:
        return self._spotify_factory(
            auth=token,
            requests_session=self._http,
            requests_timeout=self.request_timeout,
            retries=0,
            status_retries=0,
        )

    def _call(
        self,
        token: str,
        description: str,
        method: str,
        *args: Any,
        **kwargs: Any
    ) -> dict[str, Any]:
        """
        Invoke one spotipy method and translate its failures.

        Args:
            token: Bearer token for this request.
            description: What is being fetched, for messages and logs.
            method: Name of the spotipy.Spotify method.

        Returns:
            The parsed response body ({} for an empty body).

        Raises:
            CatalogRequestFailed: On any SpotifyException or network error.
        """
        logger.debug(f"Catalog request: {description}")
        try:
            result = getattr(self._spotify(token), method)(*args, **kwargs)
        except spotipy.SpotifyException as e:
            if e.http_status == 429:
                message = f"Rate limited while fetching {description}"
            elif e.http_status == 401:
                message = f"Access token rejected while fetching {description}"
            else:
                message = f"Failed to fetch {description}: {e.msg}"
            raise CatalogRequestFailed(
                message,
                http_status=e.http_status or 0,
                body=str(e.msg),
                details={"request": description}
            ) from e
        except requests.RequestException as e:
            raise CatalogRequestFailed(
                f"Network error while fetching {description}: {e}",
                details={"request": description, "original_error": str(e)}
            ) from e

        return result or {}

    # =========================================================================
    # Current user
    # =========================================================================

    def current_user_profile(self, token: str) -> dict[str, Any]:
        """GET /me"""
        return self._call(token, "user profile", "current_user")

    def current_user_playlists(self, token: str, limit: int = 50) -> dict[str, Any]:
        """GET /me/playlists"""
        return self._call(token, "playlists", "current_user_playlists", limit=limit)

    def current_user_top_artists(self, token: str, limit: int = 20) -> dict[str, Any]:
        """GET /me/top/artists"""
        return self._call(token, "top artists", "current_user_top_artists", limit=limit)

    def current_user_top_tracks(self, token: str, limit: int = 20) -> dict[str, Any]:
        """GET /me/top/tracks?limit=N"""
        return self._call(token, "top tracks", "current_user_top_tracks", limit=limit)

    def current_user_recently_played(self, token: str, limit: int = 20) -> dict[str, Any]:
        """GET /me/player/recently-played"""
        return self._call(
            token, "recently played tracks", "current_user_recently_played", limit=limit
        )

    # =========================================================================
    # Catalog
    # =========================================================================

    def search(
        self,
        token: str,
        query: str,
        search_type: str = "track",
        limit: int = 20
    ) -> dict[str, Any]:
        """
        GET /search?q=&type=

        Args:
            query: Free text query.
            search_type: One of SEARCH_TYPES.
            limit: Maximum results per type (Spotify caps this at 50).

        Raises:
            ValueError: If search_type is not supported.
            CatalogRequestFailed: On API failure.
        """
        if search_type not in SEARCH_TYPES:
            raise ValueError(
                f"Unsupported search type '{search_type}'. "
                f"Valid types: {', '.join(SEARCH_TYPES)}"
            )
        return self._call(
            token, f"search results for '{query}'", "search",
            q=query, type=search_type, limit=limit
        )

    def track(self, token: str, track_id: str) -> dict[str, Any]:
        """GET /tracks/{id}"""
        return self._call(token, f"track {track_id}", "track", track_id)

    def album(self, token: str, album_id: str) -> dict[str, Any]:
        """GET /albums/{id}"""
        return self._call(token, f"album {album_id}", "album", album_id)

    def album_tracks(self, token: str, album_id: str, limit: int = 50) -> dict[str, Any]:
        """GET /albums/{id}/tracks"""
        return self._call(
            token, f"tracks of album {album_id}", "album_tracks", album_id, limit=limit
        )

    def artist(self, token: str, artist_id: str) -> dict[str, Any]:
        """GET /artists/{id}"""
        return self._call(token, f"artist {artist_id}", "artist", artist_id)

    def artist_top_tracks(
        self,
        token: str,
        artist_id: str,
        market: str = DEFAULT_MARKET
    ) -> dict[str, Any]:
        """GET /artists/{id}/top-tracks?market=US"""
        return self._call(
            token, f"top tracks of artist {artist_id}", "artist_top_tracks",
            artist_id, country=market
        )
