"""
User directory: the users/{id} records in the datastore.

A user record is created the first time someone logs in and is never
deleted by this client:

    users/{id}/name             display name (create-if-absent)
    users/{id}/friends/...      see sound_share.social.graph
    users/{id}/friendRequests/...
    users/{id}/reviews/...      see sound_share.reviews
"""

from dataclasses import dataclass
from typing import Any

from sound_share.catalog.models import UserIdentity
from sound_share.core.logger import get_logger
from sound_share.datastore.base import HIGH_SENTINEL, Datastore, Snapshot, join_path


logger = get_logger(__name__)


USERS_ROOT = "users"


@dataclass(frozen=True)
class UserSummary:
    """
    Public view of a user record.

    Attributes:
        id: User id (Spotify user id).
        name: Display name, or the id when the record has none.
        friend_count: Number of outgoing friend edges.
        review_count: Number of reviews written.
    """
    id: str
    name: str
    friend_count: int = 0
    review_count: int = 0

    @classmethod
    def from_record(cls, user_id: str, record: Any) -> "UserSummary":
        if not isinstance(record, dict):
            return cls(id=user_id, name=user_id)
        name = record.get("name")
        return cls(
            id=user_id,
            name=name if isinstance(name, str) and name else user_id,
            friend_count=len(record.get("friends") or {}),
            review_count=len(record.get("reviews") or {}),
        )


class UserDirectory:
    """
    Reads and bootstraps user records.

    Attributes:
        datastore: The shared datastore.
    """

    def __init__(self, datastore: Datastore) -> None:
        self.datastore = datastore

    def ensure_user_record(self, identity: UserIdentity) -> bool:
        """
        Create users/{id}/name if it does not exist yet.

        An existing name is never overwritten, so a rename on Spotify does
        not rewrite the record.

        Returns:
            True if the record was created, False if it already existed.

        Raises:
            DatastoreError: If the read or the write fails.
        """
        name_path = join_path(USERS_ROOT, identity.id, "name")
        if self.datastore.get(name_path).exists():
            logger.debug(f"User record for {identity.id} already exists")
            return False
        self.datastore.set(name_path, identity.display_name)
        logger.info(f"Created user record for {identity.display_name}")
        return True

    def get_user(self, user_id: str) -> UserSummary | None:
        """Return the public summary of a user, or None if there's no record."""
        snapshot = self.datastore.get(join_path(USERS_ROOT, user_id))
        if not snapshot.exists():
            return None
        return UserSummary.from_record(user_id, snapshot.value)

    def search_users(self, prefix: str, exclude_id: str | None = None) -> list[UserSummary]:
        """
        Users whose id starts with prefix, ordered by id.

        An empty or whitespace-only prefix lists every user. The prefix is
        used as typed (ids are case-sensitive). exclude_id is dropped from
        the result; the datastore query can't express that.

        Raises:
            DatastoreError: If the query fails.
        """
        if prefix.strip():
            snapshot: Snapshot = self.datastore.query_by_key(
                USERS_ROOT, start_at=prefix, end_at=prefix + HIGH_SENTINEL
            )
        else:
            snapshot = self.datastore.get(USERS_ROOT)

        return [
            UserSummary.from_record(child.key, child.value)
            for child in snapshot.children()
            if child.key != exclude_id
        ]
