from datetime import datetime
from typing import Callable, Dict, List, Optional

from logging_config import get_logger
from schemas.chat import Group, GroupSummary, Member, Membership
from services.errors import GroupExists, GroupNotFound, InvalidGroupName
from services.identity_registry import utc_now

logger = get_logger(__name__)


class GroupDirectory:
    """Named groups and their members.

    A group exists only while it has at least one member: removing the last
    member deletes it in the same call.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        # Format: {lowercased group name: Group}, insertion ordered
        self._groups: Dict[str, Group] = {}

    def get(self, name: str) -> Optional[Group]:
        return self._groups.get((name or "").strip().lower())

    def create(self, name: str, creator_username: str, creator_connection_id: str) -> Membership:
        group_name = (name or "").strip()
        if not group_name:
            raise InvalidGroupName()
        if group_name.lower() in self._groups:
            raise GroupExists(group_name)

        joined_at = self._clock()
        group = Group(
            name=group_name,
            members=[Member(username=creator_username, connection_id=creator_connection_id, joined_at=joined_at)],
        )
        self._groups[group.key] = group
        logger.info(f"Group '{group_name}' created by '{creator_username}' ({creator_connection_id})")
        return Membership(group=group, joined_at=joined_at)

    def join(self, name: str, username: str, connection_id: str) -> Membership:
        group = self.get(name)
        if group is None:
            raise GroupNotFound((name or "").strip())

        existing = group.member(connection_id)
        if existing is not None:
            logger.debug(f"Connection {connection_id} already in group '{group.name}', keeping original join time")
            return Membership(group=group, joined_at=existing.joined_at, is_new=False)

        joined_at = self._clock()
        group.members.append(Member(username=username, connection_id=connection_id, joined_at=joined_at))
        logger.info(f"'{username}' joined group '{group.name}' ({len(group.members)} members)")
        return Membership(group=group, joined_at=joined_at)

    def leave(self, name: str, connection_id: str) -> bool:
        group = self.get(name)
        if group is None:
            return False

        remaining = [m for m in group.members if m.connection_id != connection_id]
        if len(remaining) == len(group.members):
            return False

        if remaining:
            group.members[:] = remaining
            logger.debug(f"Connection {connection_id} left group '{group.name}' ({len(remaining)} members left)")
        else:
            del self._groups[group.key]
            group.members.clear()
            logger.info(f"Group '{group.name}' deleted: last member left")
        return True

    def leave_all(self, connection_id: str) -> List[str]:
        """Remove a connection from every group; returns the names of the groups it left."""
        names = [g.name for g in self._groups.values() if g.member(connection_id) is not None]
        for group_name in names:
            self.leave(group_name, connection_id)
        return names

    def rename(self, connection_id: str, username: str) -> List[str]:
        """Carry a connection's new username into every group it belongs to; returns the group names."""
        renamed = []
        for group in self._groups.values():
            for i, m in enumerate(group.members):
                if m.connection_id == connection_id and m.username != username:
                    group.members[i] = m.model_copy(update={"username": username})
                    renamed.append(group.name)
        if renamed:
            logger.info(f"Connection {connection_id} now '{username}' in groups: {', '.join(renamed)}")
        return renamed

    def is_member(self, name: str, connection_id: str) -> bool:
        return self.member(name, connection_id) is not None

    def member(self, name: str, connection_id: str) -> Optional[Member]:
        group = self.get(name)
        if group is None:
            return None
        return group.member(connection_id)

    def all(self) -> List[GroupSummary]:
        return [GroupSummary.from_group(g) for g in self._groups.values()]

    def __len__(self) -> int:
        return len(self._groups)
