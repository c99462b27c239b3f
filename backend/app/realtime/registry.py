"""In-memory registry of live connections and their rooms.

The registry is the only shared mutable state in the real-time layer. It
keeps three views in step:

    identity   -> set of connections (multi-device)
    room       -> set of connections
    connection -> set of rooms

Rooms have no existence beyond their membership: a room appears when its
first connection joins and disappears when its last one leaves. Two room
families share one key space:

    - identity-rooms, keyed by user id, joined implicitly on admission
    - chat-rooms, keyed by chat id, joined on client request

Every mutation runs under a single lock held only for the map update,
never across a network send. Operations on connections that were never
admitted (or are already gone) are silent no-ops: disconnect races are
expected.
"""
import logging
import threading
from typing import Dict, FrozenSet, Set

from .connection import Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Authoritative mapping of identities and rooms to live connections."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

        # identity -> connections owned by that user
        self._by_identity: Dict[str, Set[Connection]] = {}

        # room_id -> connections currently joined
        self._rooms: Dict[str, Set[Connection]] = {}

        # connection -> room_ids it has joined (presence == admitted)
        self._memberships: Dict[Connection, Set[str]] = {}

    # =========================================================================
    # Mutations
    # =========================================================================

    def admit(self, connection: Connection, identity: str) -> bool:
        """Register a connection under an identity and join its identity-room.

        A connection is admitted at most once in its lifetime.

        Returns:
            True if admitted now, False if it was already admitted.
        """
        with self._lock:
            if connection in self._memberships:
                return False
            connection.identity = identity
            self._memberships[connection] = set()
            self._by_identity.setdefault(identity, set()).add(connection)
            self._join_locked(connection, identity)
            devices = len(self._by_identity[identity])
        logger.info(
            "[Registry] Admitted %s for user %s (%d live connection(s))",
            connection.id, identity, devices,
        )
        return True

    def join(self, connection: Connection, room_id: str) -> bool:
        """Add a connection to a room.

        Callers authorize the join; no conversation membership is checked here.

        Returns:
            True if the connection newly joined, False if it was already a
            member or is not admitted.
        """
        with self._lock:
            if connection not in self._memberships:
                return False
            return self._join_locked(connection, room_id)

    def leave(self, connection: Connection, room_id: str) -> bool:
        """Remove a connection from one room.

        Returns:
            True if it was a member, False otherwise.
        """
        with self._lock:
            rooms = self._memberships.get(connection)
            if rooms is None or room_id not in rooms:
                return False
            rooms.discard(room_id)
            self._remove_from_room_locked(connection, room_id)
            return True

    def evict(self, identity: str, room_id: str) -> int:
        """Remove every connection of ``identity`` from one room.

        Used when a user stops being a participant of a chat so that none of
        their devices keep receiving (or relaying) events for it.

        Returns:
            Number of connections removed.
        """
        with self._lock:
            removed = 0
            for connection in self._by_identity.get(identity, ()):
                rooms = self._memberships.get(connection)
                if rooms is None or room_id not in rooms:
                    continue
                rooms.discard(room_id)
                self._remove_from_room_locked(connection, room_id)
                removed += 1
        if removed:
            logger.info("[Registry] Evicted user %s from room %s (%d connection(s))", identity, room_id, removed)
        return removed

    def leave_all(self, connection: Connection) -> FrozenSet[str]:
        """Drop a connection from every room and forget it.

        Called exactly once, on disconnect. Calling it again is a no-op.

        Returns:
            The rooms the connection was in (empty if it was unknown).
        """
        with self._lock:
            rooms = self._memberships.pop(connection, None)
            if rooms is None:
                return frozenset()
            for room_id in rooms:
                self._remove_from_room_locked(connection, room_id)
            identity = connection.identity
            if identity is not None:
                owned = self._by_identity.get(identity)
                if owned is not None:
                    owned.discard(connection)
                    if not owned:
                        del self._by_identity[identity]
            left = frozenset(rooms)
        logger.info(
            "[Registry] Released %s (user %s) from %d room(s)",
            connection.id, connection.identity, len(left),
        )
        return left

    # =========================================================================
    # Reads
    # =========================================================================

    def resolve(self, room_id: str) -> FrozenSet[Connection]:
        """Snapshot of the connections in a room. Empty if nobody is there."""
        with self._lock:
            return frozenset(self._rooms.get(room_id, ()))

    def rooms_of(self, connection: Connection) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._memberships.get(connection, ()))

    def connections_of(self, identity: str) -> FrozenSet[Connection]:
        with self._lock:
            return frozenset(self._by_identity.get(identity, ()))

    def is_admitted(self, connection: Connection) -> bool:
        return connection in self._memberships

    def is_member(self, connection: Connection, room_id: str) -> bool:
        with self._lock:
            return room_id in self._memberships.get(connection, ())

    def stats(self) -> Dict[str, int]:
        """Counts for the stats endpoint."""
        with self._lock:
            return {
                "connections": len(self._memberships),
                "identities": len(self._by_identity),
                "rooms": len(self._rooms),
            }

    # =========================================================================
    # Internal (lock must be held)
    # =========================================================================

    def _join_locked(self, connection: Connection, room_id: str) -> bool:
        rooms = self._memberships[connection]
        if room_id in rooms:
            return False
        rooms.add(room_id)
        self._rooms.setdefault(room_id, set()).add(connection)
        return True

    def _remove_from_room_locked(self, connection: Connection, room_id: str) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._rooms[room_id]
