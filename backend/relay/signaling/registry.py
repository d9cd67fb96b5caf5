"""In-memory room membership registry.

Tracks which user IDs belong to which room and the display name recorded for
each user ID. The registry knows nothing about sockets or message formats.

Data layout:
    - room_id -> set of user IDs (a room exists only while its set is non-empty)
    - user_id -> display name (one flat map, not per room)

The flat name map means leaving any room forgets the user's name, even if the
user is still a member of another room.

Thread Safety:
    Every public method is atomic on its own. Read-modify-write on a room key
    holds one of a fixed pool of stripe locks chosen by the room's hash, so
    rooms on different stripes never contend. The name map has its own lock;
    join and leave hold the stripe lock and then the name lock, in that order,
    for their whole update. rooms() takes every stripe in index order.
    No lock is held across calls, so a snapshot taken right after a join may
    or may not reflect a concurrent leave by a third user.
"""
import logging
import threading
from contextlib import ExitStack
from typing import Dict, FrozenSet, List, Optional, Set

logger = logging.getLogger(__name__)

# Default number of stripe locks guarding room keys
DEFAULT_LOCK_STRIPES = 16


class RoomRegistry:
    """Authoritative store of room membership and display names.

    Instances are owned explicitly and passed to the router and listener at
    construction time; tests create a fresh instance per case.
    """

    def __init__(self, lock_stripes: int = DEFAULT_LOCK_STRIPES) -> None:
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be at least 1")

        # room_id -> set of member user IDs
        self._rooms: Dict[str, Set[str]] = {}

        # user_id -> last recorded display name
        self._user_names: Dict[str, str] = {}

        self._stripes: List[threading.Lock] = [
            threading.Lock() for _ in range(lock_stripes)
        ]
        self._names_lock = threading.Lock()

    def _lock_for(self, room_id: str) -> threading.Lock:
        return self._stripes[hash(room_id) % len(self._stripes)]

    def join(self, room_id: str, user_id: str, display_name: str) -> None:
        """Add a user to a room, creating the room if needed.

        Records (or overwrites) the user's display name. Joining twice with
        the same arguments leaves the registry unchanged.

        Args:
            room_id: Room to join.
            user_id: Joining user.
            display_name: Name to record for the user.
        """
        with self._lock_for(room_id), self._names_lock:
            self._rooms.setdefault(room_id, set()).add(user_id)
            self._user_names[user_id] = display_name

    def leave(self, room_id: str, user_id: str) -> None:
        """Remove a user from a room and forget the user's display name.

        The room entry is deleted when its last member leaves. Leaving a room
        the user never joined is a no-op apart from the name removal.

        Args:
            room_id: Room to leave.
            user_id: Leaving user.
        """
        with self._lock_for(room_id), self._names_lock:
            members = self._rooms.get(room_id)
            if members is not None:
                members.discard(user_id)
                if not members:
                    del self._rooms[room_id]
                    logger.debug(f"[Registry] Room {room_id} is empty and was removed")
            self._user_names.pop(user_id, None)

    def members(self, room_id: str) -> FrozenSet[str]:
        """Return a snapshot of a room's members (empty if the room is absent)."""
        with self._lock_for(room_id):
            return frozenset(self._rooms.get(room_id, ()))

    def is_member(self, room_id: str, user_id: str) -> bool:
        """Check whether a user is currently a member of a room."""
        with self._lock_for(room_id):
            members = self._rooms.get(room_id)
            return members is not None and user_id in members

    def size(self, room_id: str) -> int:
        """Get the number of members in a room, 0 if the room is absent."""
        with self._lock_for(room_id):
            return len(self._rooms.get(room_id, ()))

    def display_name(self, user_id: str) -> Optional[str]:
        """Get the last recorded display name, or None if unknown or left."""
        with self._names_lock:
            return self._user_names.get(user_id)

    def rooms(self) -> List[str]:
        """Return a snapshot of the IDs of all existing rooms."""
        with ExitStack() as stack:
            for lock in self._stripes:
                stack.enter_context(lock)
            return sorted(self._rooms)
