"""
Song and album reviews.

Reviews live in the author's user node under push keys, so they sort by
creation time:

    users/{author}/reviews/{reviewId} = {
        "rating": 1..5,
        "review": "text",
        "spotifySongId": "<track or album id>",
        "musicType": 0 (track) | 1 (album),
        "createdAt": epoch ms
    }

One review per (author, item): a second review of the same item is
rejected, the old one has to be deleted first. Deleting is the only way
a review goes away.
"""

import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Iterable

from sound_share.catalog.authorized import AuthorizedCatalog
from sound_share.catalog.models import AlbumSummary, TrackSummary, UserIdentity
from sound_share.core.exceptions import (
    CatalogRequestFailed,
    DatastoreError,
    InvalidReview,
    ReviewWriteFailed,
)
from sound_share.core.logger import get_logger
from sound_share.datastore.base import Datastore, Snapshot, Subscription, join_path
from sound_share.social.directory import USERS_ROOT


logger = get_logger(__name__)


REVIEWS = "reviews"

MIN_RATING = 1
MAX_RATING = 5


class MediaType(IntEnum):
    """What a review is about. Values are the stored musicType codes."""
    TRACK = 0
    ALBUM = 1

    @classmethod
    def parse(cls, value: "MediaType | str | int") -> "MediaType":
        """
        Accept a MediaType, its wire code (0/1) or a name ('track', 'song', 'album').

        Raises:
            InvalidReview: For anything else.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("track", "song"):
                return cls.TRACK
            if lowered == "album":
                return cls.ALBUM
        elif isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                pass
        raise InvalidReview(
            f"Unknown media type: {value!r} (expected 'track' or 'album')",
            details={"media_type": value}
        )


@dataclass(frozen=True)
class Review:
    """
    A stored review.

    Attributes:
        review_id: Push key under users/{author}/reviews.
        author_id: User who wrote it.
        item_id: Spotify track or album id.
        media_type: TRACK or ALBUM.
        rating: 1..5.
        text: Free text, may be empty.
        created_at_ms: Epoch milliseconds (0 for records written without one).
    """
    review_id: str
    author_id: str
    item_id: str
    media_type: MediaType
    rating: int
    text: str
    created_at_ms: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "rating": self.rating,
            "review": self.text,
            "spotifySongId": self.item_id,
            "musicType": int(self.media_type),
            "createdAt": self.created_at_ms,
        }

    @classmethod
    def from_wire(cls, review_id: str, author_id: str, data: Any) -> "Review | None":
        """Parse a stored review. Returns None (and logs) for malformed records."""
        try:
            rating = data["rating"]
            item_id = data["spotifySongId"]
            media_type = MediaType(data.get("musicType", MediaType.TRACK))
            if not isinstance(rating, (int, float)) or not isinstance(item_id, str):
                raise TypeError("wrong field types")
            created_at = data.get("createdAt", 0)
            return cls(
                review_id=review_id,
                author_id=author_id,
                item_id=item_id,
                media_type=media_type,
                rating=int(rating),
                text=str(data.get("review", "")),
                created_at_ms=int(created_at) if isinstance(created_at, (int, float)) else 0,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed review {author_id}/{review_id}: {e}")
            return None


@dataclass(frozen=True)
class ReviewDetails:
    """A review with the catalog data needed to display it."""
    review: Review
    title: str
    artist: str
    artwork_url: str | None


def project_reviews(snapshot: Snapshot, author_id: str) -> list[Review]:
    """Parse every review under a reviews node, newest first."""
    reviews = []
    for child in snapshot.children():
        review = Review.from_wire(child.key, author_id, child.value)
        if review is not None:
            reviews.append(review)
    reviews.sort(key=lambda r: (r.created_at_ms, r.review_id), reverse=True)
    return reviews


class ReviewStore:
    """
    Ratings and reviews of the logged-in user (and reading other users').

    Attributes:
        datastore: The shared datastore.
    """

    def __init__(
        self,
        datastore: Datastore,
        identity_provider: Callable[[], UserIdentity],
        clock: Callable[[], float] = time.time
    ) -> None:
        self.datastore = datastore
        self._identity = identity_provider
        self._clock = clock

    def _reviews_path(self, author_id: str) -> str:
        return join_path(USERS_ROOT, author_id, REVIEWS)

    def add_review(
        self,
        item_id: str,
        media_type: MediaType | str | int,
        rating: int,
        text: str = ""
    ) -> Review:
        """
        Save a review for a track or album.

        Args:
            item_id: Spotify track or album id.
            media_type: TRACK/ALBUM (or 'track'/'album', 0/1).
            rating: Integer from 1 to 5.
            text: Review text; surrounding whitespace is stripped.

        Returns:
            The stored review.

        Raises:
            InvalidReview: Bad rating, empty item id, unknown media type,
                           or the item was already reviewed by this user.
            ReviewWriteFailed: The datastore read or write failed.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            raise InvalidReview(
                f"Rating must be a whole number from {MIN_RATING} to {MAX_RATING}",
                details={"rating": rating}
            )
        if not isinstance(item_id, str) or not item_id.strip():
            raise InvalidReview("A review needs a track or album id", details={"item_id": item_id})
        kind = MediaType.parse(media_type)
        item_id = item_id.strip()

        me = self._identity()
        try:
            existing = self.list_reviews(me.id)
        except DatastoreError as e:
            raise ReviewWriteFailed(
                f"Could not check existing reviews: {e.message}",
                details={"original_error": str(e)}
            ) from e

        if any(review.item_id == item_id for review in existing):
            raise InvalidReview(
                f"You already reviewed this {kind.name.lower()}. Delete the old review first.",
                details={"item_id": item_id}
            )

        draft = Review(
            review_id="",
            author_id=me.id,
            item_id=item_id,
            media_type=kind,
            rating=rating,
            text=(text or "").strip(),
            created_at_ms=int(self._clock() * 1000),
        )
        try:
            review_id = self.datastore.push(self._reviews_path(me.id), draft.to_wire())
        except DatastoreError as e:
            raise ReviewWriteFailed(
                f"Could not save review: {e.message}",
                details={"item_id": item_id, "original_error": str(e)}
            ) from e

        logger.info(f"Saved {rating}-star review of {kind.name.lower()} {item_id}")
        return Review(
            review_id=review_id,
            author_id=draft.author_id,
            item_id=draft.item_id,
            media_type=draft.media_type,
            rating=draft.rating,
            text=draft.text,
            created_at_ms=draft.created_at_ms,
        )

    def list_reviews(self, author_id: str | None = None) -> list[Review]:
        """Reviews by author_id (default: the caller), newest first."""
        author = author_id or self._identity().id
        return project_reviews(self.datastore.get(self._reviews_path(author)), author)

    def delete_review(self, review_id: str) -> bool:
        """
        Delete one of the caller's reviews. Deleting a missing review is a no-op.

        Returns:
            True if the review existed.

        Raises:
            ReviewWriteFailed: The datastore read or delete failed.
        """
        me = self._identity()
        path = join_path(USERS_ROOT, me.id, REVIEWS, review_id)
        try:
            existed = self.datastore.get(path).exists()
            if existed:
                self.datastore.remove(path)
        except DatastoreError as e:
            raise ReviewWriteFailed(
                f"Could not delete review: {e.message}",
                details={"review_id": review_id, "original_error": str(e)}
            ) from e

        if existed:
            logger.info(f"Deleted review {review_id}")
        else:
            logger.info(f"Review {review_id} does not exist, nothing to delete")
        return existed

    def watch_reviews(self, author_id: str | None = None) -> Subscription:
        """Live review list (list[Review], newest first). Cancel when done."""
        author = author_id or self._identity().id
        return self.datastore.subscribe(self._reviews_path(author)).map(
            lambda snapshot: project_reviews(snapshot, author)
        )

    def describe_reviews(
        self,
        reviews: Iterable[Review],
        catalog: AuthorizedCatalog
    ) -> list[ReviewDetails]:
        """
        Look up title, artist and artwork for each review.

        Each distinct item is fetched once. An item the catalog can't
        return is listed under its id instead of failing the whole list.
        Authentication errors still propagate.
        """
        resolved: dict[tuple[MediaType, str], tuple[str, str, str | None]] = {}
        details = []

        for review in reviews:
            key = (review.media_type, review.item_id)
            if key not in resolved:
                try:
                    if review.media_type is MediaType.ALBUM:
                        album = AlbumSummary.from_spotify_data(catalog.album(review.item_id))
                        resolved[key] = (album.name, album.artist, album.cover_url)
                    else:
                        track = TrackSummary.from_spotify_data(catalog.track(review.item_id))
                        resolved[key] = (track.name, track.artist, track.cover_url)
                except (CatalogRequestFailed, KeyError) as e:
                    logger.warning(f"Could not look up {review.media_type.name.lower()} {review.item_id}: {e}")
                    resolved[key] = (review.item_id, "", None)

            title, artist, artwork_url = resolved[key]
            details.append(ReviewDetails(review, title, artist, artwork_url))

        return details
