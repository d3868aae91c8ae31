"""
Data models for Spotify catalog entities.

Immutable read models built from Spotify Web API JSON. They carry only
what the CLI and the review store display; the raw JSON is not kept.

Design Decisions:
    - All dataclasses are frozen (immutable)
    - Lists are stored as tuples for immutability
    - Missing optional fields fall back to empty values instead of raising,
      since Spotify omits fields for local files and unavailable items

Usage:
    from sound_share.catalog.models import TrackSummary

    track = TrackSummary.from_spotify_data(client.track(token, track_id))
    print(f"{track.name} by {track.artist}")
"""

from dataclasses import dataclass
from typing import Any


def best_image_url(images: list[dict[str, Any]] | None) -> str | None:
    """
    Pick the highest resolution image URL.

    Returns:
        URL of the largest image by width * height, or None.
    """
    if not images:
        return None
    try:
        best_image = max(
            images,
            key=lambda img: (img.get("width") or 0) * (img.get("height") or 0)
        )
        return best_image.get("url")
    except (ValueError, TypeError):
        return images[0].get("url")


def _artist_names(data: dict[str, Any]) -> tuple[str, ...]:
    return tuple(a["name"] for a in data.get("artists", []) if a and a.get("name"))


@dataclass(frozen=True)
class UserIdentity:
    """
    The logged-in user as seen by the social graph and review store.

    Attributes:
        id: Spotify user id. Primary key under users/ in the datastore.
        display_name: Name shown to friends. Falls back to the id when the
                      Spotify profile has no display name.
    """
    id: str
    display_name: str

    @classmethod
    def from_spotify_data(cls, profile: dict[str, Any]) -> "UserIdentity":
        """Build the identity from a GET /me response."""
        user_id = profile["id"]
        return cls(id=user_id, display_name=profile.get("display_name") or user_id)


@dataclass(frozen=True)
class TrackSummary:
    """
    A track as listed on the home, search and review screens.

    Attributes:
        spotify_id: Spotify track ID.
        name: Track title.
        artists: All artist names, in credit order.
        album: Album name ("" for tracks without album data).
        album_id: Spotify album ID, or None.
        cover_url: Largest album cover image, or None.
        duration_ms: Track duration in milliseconds.
        spotify_url: Link to the track on open.spotify.com, or "".
    """
    spotify_id: str
    name: str
    artists: tuple[str, ...]
    album: str = ""
    album_id: str | None = None
    cover_url: str | None = None
    duration_ms: int = 0
    spotify_url: str = ""

    @property
    def artist(self) -> str:
        """Primary artist name."""
        return self.artists[0] if self.artists else "Unknown Artist"

    @classmethod
    def from_spotify_data(
        cls,
        track_data: dict[str, Any],
        album_data: dict[str, Any] | None = None
    ) -> "TrackSummary":
        """
        Create a TrackSummary from a track object.

        Args:
            track_data: Track object (GET /tracks/{id}, top tracks, search).
            album_data: Album the track belongs to. Album tracks
                        (GET /albums/{id}/tracks) come without an embedded
                        album, so the caller passes it here.
        """
        album_info = track_data.get("album") or album_data or {}
        return cls(
            spotify_id=track_data["id"],
            name=track_data.get("name", ""),
            artists=_artist_names(track_data),
            album=album_info.get("name", ""),
            album_id=album_info.get("id"),
            cover_url=best_image_url(album_info.get("images")),
            duration_ms=track_data.get("duration_ms", 0),
            spotify_url=track_data.get("external_urls", {}).get("spotify", ""),
        )


@dataclass(frozen=True)
class AlbumSummary:
    """
    An album on the album screen or in review listings.

    Attributes:
        spotify_id: Spotify album ID.
        name: Album title.
        artists: Album artist names.
        release_date: "YYYY", "YYYY-MM" or "YYYY-MM-DD" as Spotify reports it.
        total_tracks: Number of tracks on the album.
        cover_url: Largest cover image, or None.
    """
    spotify_id: str
    name: str
    artists: tuple[str, ...]
    release_date: str = ""
    total_tracks: int = 0
    cover_url: str | None = None

    @property
    def artist(self) -> str:
        return self.artists[0] if self.artists else "Unknown Artist"

    @property
    def year(self) -> int:
        """Release year, or 0 when the date is missing or malformed."""
        try:
            return int(self.release_date[:4])
        except ValueError:
            return 0

    @classmethod
    def from_spotify_data(cls, album_data: dict[str, Any]) -> "AlbumSummary":
        return cls(
            spotify_id=album_data["id"],
            name=album_data.get("name", ""),
            artists=_artist_names(album_data),
            release_date=album_data.get("release_date", ""),
            total_tracks=album_data.get("total_tracks", 0),
            cover_url=best_image_url(album_data.get("images")),
        )


@dataclass(frozen=True)
class ArtistSummary:
    """
    An artist on the artist screen or in the top artists list.

    Attributes:
        spotify_id: Spotify artist ID.
        name: Artist name.
        genres: Genres from the artist profile (may be empty).
        popularity: Spotify popularity score (0-100).
        image_url: Largest artist image, or None.
    """
    spotify_id: str
    name: str
    genres: tuple[str, ...] = ()
    popularity: int = 0
    image_url: str | None = None

    @classmethod
    def from_spotify_data(cls, artist_data: dict[str, Any]) -> "ArtistSummary":
        return cls(
            spotify_id=artist_data["id"],
            name=artist_data.get("name", ""),
            genres=tuple(artist_data.get("genres", [])),
            popularity=artist_data.get("popularity", 0),
            image_url=best_image_url(artist_data.get("images")),
        )


@dataclass(frozen=True)
class PlaylistSummary:
    """A playlist owned or followed by the user."""
    spotify_id: str
    name: str
    owner: str
    tracks_total: int = 0

    @classmethod
    def from_spotify_data(cls, playlist_data: dict[str, Any]) -> "PlaylistSummary":
        owner = playlist_data.get("owner") or {}
        tracks = playlist_data.get("tracks") or {}
        return cls(
            spotify_id=playlist_data["id"],
            name=playlist_data.get("name", ""),
            owner=owner.get("display_name") or owner.get("id", ""),
            tracks_total=tracks.get("total", 0),
        )


@dataclass(frozen=True)
class PlayHistoryItem:
    """
    One entry of the recently played list.

    Attributes:
        track: The track that was played.
        played_at: ISO 8601 UTC timestamp, e.g. "2024-05-01T12:00:00.000Z".
    """
    track: TrackSummary
    played_at: str

    @classmethod
    def from_spotify_data(cls, item: dict[str, Any]) -> "PlayHistoryItem":
        return cls(
            track=TrackSummary.from_spotify_data(item["track"]),
            played_at=item.get("played_at", ""),
        )


def items_of(page: dict[str, Any] | None, key: str | None = None) -> list[dict[str, Any]]:
    """
    Extract the non-null items of a paging object.

    Args:
        page: A paging object ({"items": [...]}), or a search response
              wrapping paging objects by type ({"tracks": {"items": [...]}}).
        key: The wrapper key for search responses ("tracks", "albums", ...).
    """
    if not page:
        return []
    if key is not None:
        page = page.get(key) or {}
    return [item for item in page.get("items", []) if item]
