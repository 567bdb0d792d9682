from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from constants import USERNAME_MAX_LENGTH
from logging_config import get_logger
from schemas.chat import User
from services.errors import InvalidIdentity, RoomRequired, UsernameTaken

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IdentityRegistry:
    """Binds live connections to usernames.

    Usernames are unique among currently bound connections, compared
    case-insensitively. Nothing survives a disconnect.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now, max_length: int = USERNAME_MAX_LENGTH):
        self._clock = clock
        self._max_length = max_length
        # Format: {connection_id: User}, insertion ordered
        self._users: Dict[str, User] = {}
        # Format: {lowercased username: connection_id}
        self._keys: Dict[str, str] = {}

    def _validate(self, username: Optional[str], room: Optional[str]):
        name = (username or "").strip()
        room_name = (room or "").strip()
        if not name:
            raise InvalidIdentity("Username is required")
        if len(name) > self._max_length:
            raise InvalidIdentity(f"Username must be {self._max_length} characters or less")
        if "  " in name:
            raise InvalidIdentity("Username cannot contain consecutive spaces")
        if not room_name:
            raise RoomRequired()
        return name, room_name

    def join(self, connection_id: str, username: str, room: str) -> User:
        name, room_name = self._validate(username, room)

        # A connection re-announcing itself gives up its old name first
        if connection_id in self._users:
            previous = self.leave(connection_id)
            logger.debug(f"Connection {connection_id} re-joining, released '{previous.username}'")

        key = name.lower()
        owner = self._keys.get(key)
        if owner is not None and owner != connection_id:
            logger.info(f"Username '{name}' rejected for connection {connection_id}: already taken")
            raise UsernameTaken(name)

        user = User(connection_id=connection_id, username=name, room=room_name, joined_at=self._clock())
        self._users[connection_id] = user
        self._keys[key] = connection_id
        logger.info(f"User '{name}' bound to connection {connection_id} in room '{room_name}'")
        return user

    def leave(self, connection_id: str) -> Optional[User]:
        user = self._users.pop(connection_id, None)
        if user is None:
            return None
        if self._keys.get(user.key) == connection_id:
            del self._keys[user.key]
        logger.info(f"User '{user.username}' unbound from connection {connection_id}")
        return user

    def by_connection(self, connection_id: str) -> Optional[User]:
        return self._users.get(connection_id)

    def by_username(self, username: str) -> Optional[User]:
        connection_id = self._keys.get((username or "").strip().lower())
        if connection_id is None:
            return None
        return self._users.get(connection_id)

    def all(self) -> List[User]:
        return list(self._users.values())

    def in_room(self, room: str) -> List[User]:
        room_name = (room or "").strip()
        return [u for u in self._users.values() if u.room == room_name]

    def __len__(self) -> int:
        return len(self._users)
