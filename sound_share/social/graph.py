"""
Friend graph protocol over the shared datastore.

Data layout:
    users/{owner}/friends/{peer}            = {"name": peer display name}
    users/{target}/friendRequests/{sender}  = {"name": sender display name}

A friendship is a symmetric pair of friend edges. Requests are written
into the target's node by the sender; the target approves (both edges
plus delete the request) or denies (delete the request).

Every user writes into other users' nodes with plain keyed writes; there
is no transaction, no lock and no compare-and-set. Correctness rests on:

    - keyed writes being idempotent (a double tap writes the same key twice)
    - multi-write operations being Sagas whose steps are ordered so any
      interruption leaves a harmless state:
        approve: own edge -> peer edge -> delete request
                 (worst case: a stale request next to a full friendship)
        remove:  own edge -> peer edge
                 (worst case: the peer still lists us)
    - audit_friendships() / repair_friendship() to find and finish
      interrupted sagas

Benign no-ops (request to self, already friends, nothing to approve) are
logged at INFO and reported through FriendActionResult.changed, never
raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from sound_share.catalog.models import UserIdentity
from sound_share.core.exceptions import DatastoreError, GraphWriteFailed
from sound_share.core.logger import get_logger
from sound_share.datastore.base import Datastore, Snapshot, Subscription, join_path
from sound_share.social.directory import USERS_ROOT, UserDirectory, UserSummary
from sound_share.social.saga import Saga


logger = get_logger(__name__)


FRIENDS = "friends"
FRIEND_REQUESTS = "friendRequests"


IdentityProvider = Callable[[], UserIdentity]


class FriendshipState(Enum):
    """How two users' friend edges relate, seen from the caller."""
    MUTUAL = "mutual"
    OUTGOING_ONLY = "outgoing_only"   # we list them, they don't list us
    INCOMING_ONLY = "incoming_only"   # they list us, we don't list them
    NONE = "none"


@dataclass(frozen=True)
class FriendEntry:
    """A friend or a pending request, as listed to the user."""
    id: str
    name: str


@dataclass(frozen=True)
class FriendshipIssue:
    """An asymmetric friendship found by audit_friendships()."""
    peer_id: str
    name: str
    state: FriendshipState


@dataclass(frozen=True)
class FriendActionResult:
    """
    Outcome of a friend graph mutation.

    Attributes:
        operation: Operation name ('send_friend_request', ...).
        peer_id: The other user.
        changed: False for benign no-ops (nothing was written).
        message: Human-readable summary for the CLI.
        completed_steps: Saga steps that ran.
    """
    operation: str
    peer_id: str
    changed: bool
    message: str
    completed_steps: tuple[str, ...] = field(default_factory=tuple)


def project_entries(snapshot: Snapshot) -> list[FriendEntry]:
    """
    Turn a friends or friendRequests node into a sorted list.

    Sorted by name (case-insensitive), then id. Entries without a usable
    name are listed under their id.
    """
    entries = []
    for child in snapshot.children():
        value = child.value
        name = value.get("name") if isinstance(value, dict) else value
        if not isinstance(name, str) or not name:
            name = child.key
        entries.append(FriendEntry(id=child.key, name=name))
    entries.sort(key=lambda entry: (entry.name.casefold(), entry.id))
    return entries


class SocialGraphService:
    """
    Friend request / approve / deny / remove protocol.

    The caller's identity comes from identity_provider, called once per
    operation so a re-login is picked up immediately.

    Attributes:
        datastore: The shared datastore.
        directory: User directory used for search.

    Example:
        graph = SocialGraphService(store, catalog.current_identity)
        graph.send_friend_request("bob")
        for friends in graph.watch_friends():
            print([f.name for f in friends])
    """

    def __init__(
        self,
        datastore: Datastore,
        identity_provider: IdentityProvider,
        directory: UserDirectory | None = None
    ) -> None:
        self.datastore = datastore
        self._identity = identity_provider
        self.directory = directory or UserDirectory(datastore)

    # =========================================================================
    # Paths
    # =========================================================================

    @staticmethod
    def edge_path(owner_id: str, peer_id: str) -> str:
        return join_path(USERS_ROOT, owner_id, FRIENDS, peer_id)

    @staticmethod
    def request_path(target_id: str, requester_id: str) -> str:
        return join_path(USERS_ROOT, target_id, FRIEND_REQUESTS, requester_id)

    def _read(self, operation: str, step: str, path: str) -> Snapshot:
        """One-shot read inside a mutation; failures become GraphWriteFailed."""
        try:
            return self.datastore.get(path)
        except DatastoreError as e:
            raise GraphWriteFailed(
                f"Could not finish {operation.replace('_', ' ')}: {e.message}",
                operation=operation,
                failed_step=step,
                details={"original_error": str(e)}
            ) from e

    def _noop(self, operation: str, peer_id: str, message: str) -> FriendActionResult:
        logger.info(message)
        return FriendActionResult(operation, peer_id, changed=False, message=message)

    # =========================================================================
    # Mutations
    # =========================================================================

    def send_friend_request(self, target_id: str) -> FriendActionResult:
        """
        Ask target_id to become friends.

        Writes users/{target}/friendRequests/{self} = {name}. Sending the
        same request twice overwrites the same key.

        Raises:
            GraphWriteFailed: If the friendship check or the write fails.
        """
        operation = "send_friend_request"
        me = self._identity()
        request_path = self.request_path(target_id, me.id)

        if target_id == me.id:
            return self._noop(operation, target_id, "You can't send a friend request to yourself")

        if self._read(operation, "check_friendship", self.edge_path(me.id, target_id)).exists():
            return self._noop(operation, target_id, f"You are already friends with {target_id}")

        saga = Saga(operation, safe_partial_state="nothing written")
        saga.step("write_request", lambda: self.datastore.set(request_path, {"name": me.display_name}))
        completed = saga.run()

        logger.info(f"Friend request sent to {target_id}")
        return FriendActionResult(
            operation, target_id, changed=True,
            message=f"Friend request sent to {target_id}",
            completed_steps=tuple(completed)
        )

    def approve_friend_request(self, requester_id: str) -> FriendActionResult:
        """
        Accept a pending request from requester_id.

        Steps, strictly in this order:
            1. write_own_edge:  users/{self}/friends/{requester} = {name}
            2. write_peer_edge: users/{requester}/friends/{self} = {name}
            3. delete_request:  users/{self}/friendRequests/{requester}

        The requester's name comes from the pending request. Approving again
        after the request is gone re-uses the name on the existing edge, so a
        repeat approval finishes an interrupted one. With neither a request
        nor an edge nothing is written.

        Raises:
            GraphWriteFailed: With the completed steps, if any step fails.
        """
        operation = "approve_friend_request"
        me = self._identity()

        if requester_id == me.id:
            return self._noop(operation, requester_id, "You can't approve a request from yourself")

        own_edge = self.edge_path(me.id, requester_id)
        peer_edge = self.edge_path(requester_id, me.id)
        request_path = self.request_path(me.id, requester_id)

        request = self._read(operation, "read_request", request_path)
        if request.exists():
            name = _name_of(request.value) or requester_id
        else:
            edge = self._read(operation, "read_own_edge", own_edge)
            if not edge.exists():
                return self._noop(
                    operation, requester_id, f"No pending friend request from {requester_id}"
                )
            name = _name_of(edge.value) or requester_id

        saga = Saga(
            operation,
            safe_partial_state="friend edges may exist while the request still lingers; "
                               "approving again finishes the job"
        )
        saga.step("write_own_edge", lambda: self.datastore.set(own_edge, {"name": name}))
        saga.step("write_peer_edge", lambda: self.datastore.set(peer_edge, {"name": me.display_name}))
        saga.step("delete_request", lambda: self.datastore.remove(request_path))
        completed = saga.run()

        logger.info(f"You are now friends with {name}")
        return FriendActionResult(
            operation, requester_id, changed=True,
            message=f"You are now friends with {name}",
            completed_steps=tuple(completed)
        )

    def deny_friend_request(self, requester_id: str) -> FriendActionResult:
        """
        Delete the pending request from requester_id. Never touches edges.

        Raises:
            GraphWriteFailed: If the read or the delete fails.
        """
        operation = "deny_friend_request"
        me = self._identity()
        request_path = self.request_path(me.id, requester_id)

        if not self._read(operation, "read_request", request_path).exists():
            return self._noop(operation, requester_id, f"No pending friend request from {requester_id}")

        saga = Saga(operation, safe_partial_state="nothing changed")
        saga.step("delete_request", lambda: self.datastore.remove(request_path))
        completed = saga.run()

        logger.info(f"Denied friend request from {requester_id}")
        return FriendActionResult(
            operation, requester_id, changed=True,
            message=f"Denied friend request from {requester_id}",
            completed_steps=tuple(completed)
        )

    def remove_friend(self, peer_id: str) -> FriendActionResult:
        """
        End the friendship with peer_id by deleting both edges.

        Steps: delete_own_edge, then delete_peer_edge. Both deletes run
        whenever either edge exists, so removing again after a half-finished
        removal completes it. With neither edge present nothing is written.

        Raises:
            GraphWriteFailed: With the completed steps, if any step fails.
        """
        operation = "remove_friend"
        me = self._identity()

        if peer_id == me.id:
            return self._noop(operation, peer_id, "You can't remove yourself")

        own_edge = self.edge_path(me.id, peer_id)
        peer_edge = self.edge_path(peer_id, me.id)

        if not (
            self._read(operation, "read_own_edge", own_edge).exists()
            or self._read(operation, "read_peer_edge", peer_edge).exists()
        ):
            return self._noop(operation, peer_id, f"{peer_id} is not in your friends")

        saga = Saga(
            operation,
            safe_partial_state="the peer may still list us as a friend; removing again finishes the job"
        )
        saga.step("delete_own_edge", lambda: self.datastore.remove(own_edge))
        saga.step("delete_peer_edge", lambda: self.datastore.remove(peer_edge))
        completed = saga.run()

        logger.info(f"Removed {peer_id} from friends")
        return FriendActionResult(
            operation, peer_id, changed=True,
            message=f"Removed {peer_id} from friends",
            completed_steps=tuple(completed)
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def list_friends(self) -> list[FriendEntry]:
        """Friends of the caller, sorted by name."""
        me = self._identity()
        return project_entries(self.datastore.get(join_path(USERS_ROOT, me.id, FRIENDS)))

    def list_friend_requests(self) -> list[FriendEntry]:
        """Pending incoming requests, sorted by name."""
        me = self._identity()
        return project_entries(self.datastore.get(join_path(USERS_ROOT, me.id, FRIEND_REQUESTS)))

    def search_users(self, prefix: str) -> list[UserSummary]:
        """Users whose id starts with prefix, excluding the caller."""
        me = self._identity()
        return self.directory.search_users(prefix, exclude_id=me.id)

    def is_friend(self, peer_id: str) -> bool:
        """Fresh read of the caller's edge to peer_id."""
        me = self._identity()
        return self.datastore.get(self.edge_path(me.id, peer_id)).exists()

    def friendship_state(self, peer_id: str) -> FriendshipState:
        """Compare both edges between the caller and peer_id."""
        me = self._identity()
        outgoing = self.datastore.get(self.edge_path(me.id, peer_id)).exists()
        incoming = self.datastore.get(self.edge_path(peer_id, me.id)).exists()
        if outgoing and incoming:
            return FriendshipState.MUTUAL
        if outgoing:
            return FriendshipState.OUTGOING_ONLY
        if incoming:
            return FriendshipState.INCOMING_ONLY
        return FriendshipState.NONE

    def audit_friendships(self) -> list[FriendshipIssue]:
        """
        Find friendships where only one of the two edges exists.

        Reads the whole users tree, since incoming edges live in other
        users' nodes. Meant for an occasional manual check, not for every
        screen refresh.

        Returns:
            Issues sorted by peer name, then id.
        """
        me = self._identity()
        users = _node(self.datastore.get(USERS_ROOT).value)

        mine = _node(_node(users.get(me.id)).get(FRIENDS))
        issues = []

        for peer_id, edge in mine.items():
            peer_friends = _node(_node(users.get(peer_id)).get(FRIENDS))
            if me.id not in peer_friends:
                issues.append(FriendshipIssue(
                    peer_id, _name_of(edge) or peer_id, FriendshipState.OUTGOING_ONLY
                ))

        for peer_id, record in users.items():
            if peer_id == me.id or peer_id in mine or not isinstance(record, dict):
                continue
            if me.id in _node(record.get(FRIENDS)):
                issues.append(FriendshipIssue(
                    peer_id, _name_of(record) or peer_id, FriendshipState.INCOMING_ONLY
                ))

        issues.sort(key=lambda issue: (issue.name.casefold(), issue.peer_id))
        if issues:
            logger.warning(f"Found {len(issues)} one-sided friendship(s)")
        return issues

    def repair_friendship(self, peer_id: str) -> FriendActionResult:
        """
        Finish an interrupted approve or remove.

        Behavior:
            - one-sided edges + pending request from peer -> approve again
            - one-sided edges, no request                 -> remove again
            - full friendship + stale request             -> approve again
              (only deletes the request)
            - anything else                               -> nothing to do

        A pending request with no edges at all is a normal request and is
        left for the user to approve or deny.
        """
        operation = "repair_friendship"
        me = self._identity()
        state = self.friendship_state(peer_id)
        has_request = self.datastore.get(self.request_path(me.id, peer_id)).exists()

        if state in (FriendshipState.OUTGOING_ONLY, FriendshipState.INCOMING_ONLY):
            logger.info(f"Repairing one-sided friendship with {peer_id} ({state.value})")
            if has_request:
                return self.approve_friend_request(peer_id)
            return self.remove_friend(peer_id)

        if state is FriendshipState.MUTUAL and has_request:
            logger.info(f"Clearing stale friend request from {peer_id}")
            return self.approve_friend_request(peer_id)

        return self._noop(operation, peer_id, f"Friendship with {peer_id} is consistent")

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def watch_friends(self) -> Subscription:
        """
        Live friends list. Yields list[FriendEntry] now and after every change.

        The caller must cancel the subscription when done.
        """
        me = self._identity()
        return self.datastore.subscribe(join_path(USERS_ROOT, me.id, FRIENDS)).map(project_entries)

    def watch_friend_requests(self) -> Subscription:
        """Live list of pending requests. Same contract as watch_friends()."""
        me = self._identity()
        return self.datastore.subscribe(
            join_path(USERS_ROOT, me.id, FRIEND_REQUESTS)
        ).map(project_entries)


def _node(value: Any) -> dict[str, Any]:
    """Children of a tree node; scalars and missing nodes have none."""
    return value if isinstance(value, dict) else {}


def _name_of(value: Any) -> str | None:
    if isinstance(value, dict):
        name = value.get("name")
        if isinstance(name, str) and name:
            return name
    return None
