"""
Friend graph for sound-share.

    - saga: Ordered idempotent steps for multi-write operations
    - directory: User records and user search
    - graph: Friend request / approve / deny / remove protocol
"""

from sound_share.social.directory import UserDirectory, UserSummary
from sound_share.social.graph import (
    FriendActionResult,
    FriendEntry,
    FriendshipIssue,
    FriendshipState,
    SocialGraphService,
)
from sound_share.social.saga import Saga, SagaStep

__all__ = [
    "UserDirectory",
    "UserSummary",
    "FriendActionResult",
    "FriendEntry",
    "FriendshipIssue",
    "FriendshipState",
    "SocialGraphService",
    "Saga",
    "SagaStep",
]
