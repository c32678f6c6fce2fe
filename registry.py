import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Optional[str] = None


@dataclass
class Connection:
    connection_id: str
    identity: Optional[Identity] = None
    rooms: Set[str] = field(default_factory=set)

    @property
    def authenticated(self) -> bool:
        return self.identity is not None


class ConnectionRegistry:
    """Live connections keyed by connection id."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def register(self, identity: Optional[Identity] = None, connection_id: Optional[str] = None) -> Connection:
        connection_id = connection_id or uuid.uuid4().hex
        if connection_id in self._connections:
            raise ValueError(f"Connection {connection_id} is already registered")
        connection = Connection(connection_id=connection_id, identity=identity)
        self._connections[connection_id] = connection
        logger.debug(f"Registered connection {connection_id} (authenticated={connection.authenticated})")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def remove(self, connection_id: str) -> Optional[Connection]:
        connection = self._connections.pop(connection_id, None)
        if connection:
            logger.debug(f"Removed connection {connection_id}")
        return connection

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)


class RoomRegistry:
    """
    Room membership table: room id -> connection ids in join order.

    A room exists only while it has members. The entry is created by the first
    join and removed by the leave that empties it.
    """

    def __init__(self):
        # dict keys keep insertion order, which is the join order
        self._rooms: Dict[str, Dict[str, None]] = {}

    def join(self, room_id: str, connection_id: str) -> List[str]:
        """Add a member and return the members that were already present, oldest first."""
        members = self._rooms.setdefault(room_id, {})
        existing = list(members)
        members[connection_id] = None
        logger.info(f"Connection {connection_id} joined room {room_id} (members: {len(members)})")
        return existing

    def leave(self, room_id: str, connection_id: str) -> Optional[List[str]]:
        """
        Remove a member.

        Returns:
            The remaining members, or None if the connection was not in the room.
        """
        members = self._rooms.get(room_id)
        if members is None or connection_id not in members:
            return None
        del members[connection_id]
        remaining = list(members)
        if not remaining:
            del self._rooms[room_id]
            logger.info(f"Room {room_id} is empty, removing it")
        else:
            logger.info(f"Connection {connection_id} left room {room_id} (members: {len(remaining)})")
        return remaining

    def members(self, room_id: str) -> List[str]:
        return list(self._rooms.get(room_id, ()))

    def is_member(self, room_id: str, connection_id: str) -> bool:
        return connection_id in self._rooms.get(room_id, ())

    def is_empty(self, room_id: str) -> bool:
        return not self._rooms.get(room_id)

    def rooms(self) -> List[str]:
        return list(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
