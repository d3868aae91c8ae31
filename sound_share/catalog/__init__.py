"""
Spotify catalog access for sound-share.

    - client: Stateless Web API wrapper (token passed per call)
    - authorized: Same calls bound to the logged-in user's credential
    - models: Frozen read models built from API responses
"""

from sound_share.catalog.authorized import AuthorizedCatalog
from sound_share.catalog.client import SEARCH_TYPES, MusicCatalogClient
from sound_share.catalog.models import (
    AlbumSummary,
    ArtistSummary,
    PlayHistoryItem,
    PlaylistSummary,
    TrackSummary,
    UserIdentity,
)

__all__ = [
    "AuthorizedCatalog",
    "MusicCatalogClient",
    "SEARCH_TYPES",
    "AlbumSummary",
    "ArtistSummary",
    "PlayHistoryItem",
    "PlaylistSummary",
    "TrackSummary",
    "UserIdentity",
]
