import functools
import threading
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from pydantic import TypeAdapter, ValidationError as PayloadError

from constants import BOT_NAME, DEFAULT_THEME, VALID_THEMES, WELCOME_MESSAGE
from logging_config import get_logger
from schemas.chat import GroupSummary, Message, User, UserSummary
from schemas.events import (
    ChangeThemePayload,
    GroupMessagePayload,
    GroupNamePayload,
    JoinRoomPayload,
    PrivateHistoryPayload,
    PrivateMessagePayload,
)
from services.channel_router import group_key, private_key, room_key
from services.errors import (
    CannotMessageSelf,
    ChatError,
    NotGroupMember,
    NotInRoom,
    RecipientOffline,
    StateError,
)
from services.group_directory import GroupDirectory
from services.history_store import HistoryStore
from services.identity_registry import IdentityRegistry, utc_now

logger = get_logger(__name__)


class Transport(Protocol):
    def send(self, connection_id: str, event: str, data=None) -> bool: ...

    def to_channel(self, channel_key: str, event: str, data=None, exclude: Optional[str] = None) -> int: ...

    def to_all(self, event: str, data=None) -> int: ...

    def subscribe(self, connection_id: str, channel_key: str): ...

    def unsubscribe(self, connection_id: str, channel_key: str): ...

    def unsubscribe_all(self, connection_id: str): ...


class ThemeStore(Protocol):
    def get_theme(self, username: str) -> Optional[str]: ...

    def set_theme(self, username: str, theme: str): ...


def reports_errors(error_event: str, unbound_event: Optional[str] = None):
    """Run a handler under the coordinator lock and report ChatErrors to the caller only.

    ``unbound_event`` overrides the event name when the connection has no identity yet.
    """

    def decorator(handler):
        @functools.wraps(handler)
        def wrapper(self, connection_id: str, *args, **kwargs):
            with self._lock:
                try:
                    return handler(self, connection_id, *args, **kwargs)
                except ChatError as e:
                    event = error_event
                    if unbound_event and isinstance(e, StateError):
                        event = unbound_event
                    logger.warning(f"{handler.__name__} rejected for connection {connection_id}: {e.message}")
                    self.transport.send(connection_id, event, e.message)
                    return None

        return wrapper

    return decorator


class SessionCoordinator:
    """Turns client events into registry updates and outbound events.

    Every handler runs to completion under one lock and never awaits, so a
    check followed by a mutation (name uniqueness, group membership) cannot
    interleave with another event.
    """

    def __init__(
        self,
        transport: Transport,
        themes: ThemeStore,
        identity: Optional[IdentityRegistry] = None,
        groups: Optional[GroupDirectory] = None,
        history: Optional[HistoryStore] = None,
        clock: Callable[[], datetime] = utc_now,
        bot_name: str = BOT_NAME,
        welcome_message: str = WELCOME_MESSAGE,
        valid_themes: Optional[List[str]] = None,
        default_theme: str = DEFAULT_THEME,
    ):
        self.transport = transport
        self.themes = themes
        self.clock = clock
        self.identity = identity if identity is not None else IdentityRegistry(clock=clock)
        self.groups = groups if groups is not None else GroupDirectory(clock=clock)
        self.history = history if history is not None else HistoryStore()
        self.bot_name = bot_name
        self.welcome_message = welcome_message
        self.valid_themes = list(valid_themes if valid_themes is not None else VALID_THEMES)
        self.default_theme = default_theme
        self._lock = threading.RLock()
        self._routes = {
            "joinRoom": self._on_join_room,
            "chatMessage": self._on_chat_message,
            "privateMessage": self._on_private_message,
            "requestPrivateHistory": self._on_request_private_history,
            "requestRoomHistory": self._on_request_room_history,
            "createGroup": self._on_create_group,
            "requestGroups": self._on_request_groups,
            "joinGroup": self._on_join_group,
            "groupMessage": self._on_group_message,
            "requestGroupHistory": self._on_request_group_history,
            "changeTheme": self._on_change_theme,
        }

    # Inbound frames

    def dispatch(self, connection_id: str, event: str, data=None):
        route = self._routes.get(event)
        if route is None:
            logger.warning(f"Unknown event '{event}' from connection {connection_id}")
            self.transport.send(connection_id, "error", f"Unknown event: {event}")
            return
        try:
            route(connection_id, data)
        except PayloadError as e:
            logger.warning(f"Malformed '{event}' payload from connection {connection_id}: {e}")
            self.transport.send(connection_id, "error", f"Malformed {event} payload")

    def _on_join_room(self, connection_id, data):
        payload = JoinRoomPayload.model_validate(data or {})
        self.join_room(connection_id, payload.username, payload.room, payload.theme)

    def _on_chat_message(self, connection_id, data):
        self.chat_message(connection_id, _text(data))

    def _on_private_message(self, connection_id, data):
        payload = PrivateMessagePayload.model_validate(data)
        self.private_message(connection_id, payload.to_username, payload.message)

    def _on_request_private_history(self, connection_id, data):
        payload = PrivateHistoryPayload.model_validate(data)
        self.request_private_history(connection_id, payload.other_username)

    def _on_request_room_history(self, connection_id, data):
        self.request_room_history(connection_id)

    def _on_create_group(self, connection_id, data):
        payload = GroupNamePayload.model_validate(data or {})
        self.create_group(connection_id, payload.group_name)

    def _on_request_groups(self, connection_id, data):
        self.request_groups(connection_id)

    def _on_join_group(self, connection_id, data):
        payload = GroupNamePayload.model_validate(data or {})
        self.join_group(connection_id, payload.group_name)

    def _on_group_message(self, connection_id, data):
        payload = GroupMessagePayload.model_validate(data)
        self.group_message(connection_id, payload.group_name, payload.message)

    def _on_request_group_history(self, connection_id, data):
        payload = GroupNamePayload.model_validate(data or {})
        self.request_group_history(connection_id, payload.group_name)

    def _on_change_theme(self, connection_id, data):
        payload = ChangeThemePayload.model_validate(data or {})
        self.change_theme(connection_id, payload.theme)

    # Helpers

    def _require_user(self, connection_id: str) -> User:
        user = self.identity.by_connection(connection_id)
        if user is None:
            raise NotInRoom()
        return user

    def _message(self, sender: str, text: str) -> Message:
        return Message.create(sender, text, self.clock())

    def _resolve_theme(self, username: str, hint: Optional[str]) -> str:
        stored = self.themes.get_theme(username)
        if stored is not None:
            logger.debug(f"User '{username}' has saved theme: {stored}")
            return stored
        theme = hint if hint in self.valid_themes else self.default_theme
        self.themes.set_theme(username, theme)
        logger.debug(f"Saved theme '{theme}' for user '{username}'")
        return theme

    def roster(self, room: Optional[str] = None) -> List[UserSummary]:
        """Connected users, optionally limited to one room."""
        with self._lock:
            users = self.identity.all() if room is None else self.identity.in_room(room)
            return [UserSummary.from_user(u) for u in users]

    def group_list(self) -> List[GroupSummary]:
        with self._lock:
            return self.groups.all()

    def _room_roster(self, room: str) -> dict:
        return {"room": room, "users": [u.model_dump(mode="json", by_alias=True) for u in self.roster(room)]}

    def _global_roster(self) -> dict:
        return {"users": [u.model_dump(mode="json", by_alias=True) for u in self.roster()]}

    def _group_list(self) -> dict:
        return {"groups": [g.model_dump(mode="json", by_alias=True) for g in self.group_list()]}

    def _publish_rosters(self, room: str):
        self.transport.to_channel(room_key(room), "roomUsers", self._room_roster(room))
        self.transport.to_all("allUsers", self._global_roster())

    # Connection lifecycle

    @reports_errors("joinError")
    def join_room(self, connection_id: str, username: str, room: str, theme: Optional[str] = None):
        previous = self.identity.by_connection(connection_id)
        try:
            user = self.identity.join(connection_id, username, room)
        finally:
            if previous is not None:
                self._settle_rejoin(connection_id, previous)

        user_theme = self._resolve_theme(user.username, theme)
        channel = room_key(user.room)
        self.transport.subscribe(connection_id, channel)

        history = self.history.query(channel, since=user.joined_at)
        if history:
            self.transport.send(
                connection_id, "roomHistory", {"room": user.room, "messages": [m.to_wire() for m in history]}
            )

        self.transport.send(connection_id, "message", self._message(self.bot_name, self.welcome_message).to_wire())

        notice = self._message(self.bot_name, f"{user.username} has joined the chat")
        self.transport.to_channel(channel, "message", notice.to_wire(), exclude=connection_id)
        self.history.append(channel, notice)

        self._publish_rosters(user.room)
        self.transport.send(connection_id, "allGroups", self._group_list())
        self.transport.send(connection_id, "themePreference", {"theme": user_theme})
        logger.info(f"{user.username} has joined room '{user.room}' (theme {user_theme})")
        return user

    def _settle_rejoin(self, connection_id: str, previous: User):
        """Clean up after a connection re-sends joinRoom, whether or not the new binding took."""
        current = self.identity.by_connection(connection_id)
        if current is None or current.room != previous.room:
            self.transport.unsubscribe(connection_id, room_key(previous.room))
            self.transport.to_channel(room_key(previous.room), "roomUsers", self._room_roster(previous.room))

        if current is None:
            # An unbound connection keeps no group memberships
            for group_name in self.groups.leave_all(connection_id):
                self.transport.unsubscribe(connection_id, group_key(group_name))
            self.transport.to_all("allUsers", self._global_roster())
            self.transport.to_all("allGroups", self._group_list())
        elif current.username != previous.username:
            if self.groups.rename(connection_id, current.username):
                self.transport.to_all("allGroups", self._group_list())

    def disconnect(self, connection_id: str) -> Optional[User]:
        with self._lock:
            user = self.identity.leave(connection_id)
            if user is None:
                self.transport.unsubscribe_all(connection_id)
                logger.debug(f"Connection {connection_id} closed without joining")
                return None

            channel = room_key(user.room)
            notice = self._message(self.bot_name, f"{user.username} has left the chat")
            self.transport.to_channel(channel, "message", notice.to_wire(), exclude=connection_id)
            self.history.append(channel, notice)
            self._publish_rosters(user.room)

            left = self.groups.leave_all(connection_id)
            if left:
                logger.info(f"{user.username} removed from groups: {', '.join(left)}")
            self.transport.to_all("allGroups", self._group_list())

            self.transport.unsubscribe_all(connection_id)
            logger.info(f"{user.username} has left room '{user.room}'")
            return user

    # Room

    @reports_errors("joinError")
    def chat_message(self, connection_id: str, text: str):
        user = self._require_user(connection_id)
        channel = room_key(user.room)
        message = self.history.append(channel, self._message(user.username, text))
        self.transport.to_channel(channel, "message", message.to_wire())
        logger.debug(f"Room message from '{user.username}' in '{user.room}'")
        return message

    @reports_errors("joinError")
    def request_room_history(self, connection_id: str):
        user = self._require_user(connection_id)
        history = self.history.query(room_key(user.room), since=user.joined_at)
        self.transport.send(
            connection_id, "roomHistory", {"room": user.room, "messages": [m.to_wire() for m in history]}
        )
        return history

    # Private

    @reports_errors("privateMessageError", unbound_event="joinError")
    def private_message(self, connection_id: str, to_username: str, text: str):
        sender = self._require_user(connection_id)
        receiver = self.identity.by_username(to_username)
        if receiver is None:
            raise RecipientOffline((to_username or "").strip())
        if receiver.connection_id == connection_id:
            raise CannotMessageSelf()

        channel = private_key(sender.key, receiver.key)
        message = self.history.append(channel, self._message(sender.username, text))
        wire = message.to_wire()
        self.transport.send(
            receiver.connection_id, "privateMessage", {"from": sender.username, "message": wire, "room": channel}
        )
        self.transport.send(
            connection_id,
            "privateMessage",
            {"from": sender.username, "to": receiver.username, "message": wire, "room": channel},
        )
        logger.debug(f"Private message '{sender.username}' -> '{receiver.username}'")
        return message

    @reports_errors("joinError")
    def request_private_history(self, connection_id: str, other_username: str):
        user = self._require_user(connection_id)
        other = self.identity.by_username(other_username)
        other_name = other.username if other is not None else (other_username or "").strip()
        # Private logs are never scoped to the reader's join time
        history = self.history.query(private_key(user.key, other_name.lower()))
        self.transport.send(
            connection_id, "privateHistory", {"otherUsername": other_name, "messages": [m.to_wire() for m in history]}
        )
        return history

    # Groups

    @reports_errors("groupError")
    def create_group(self, connection_id: str, group_name: str):
        user = self._require_user(connection_id)
        membership = self.groups.create(group_name, user.username, connection_id)
        group = membership.group
        self.transport.subscribe(connection_id, group_key(group.name))
        self.transport.to_all("allGroups", self._group_list())
        self.transport.send(
            connection_id,
            "groupCreated",
            {
                "group": GroupSummary.from_group(group).model_dump(mode="json", by_alias=True),
                "joinTime": membership.joined_at.isoformat(),
            },
        )
        return membership

    def request_groups(self, connection_id: str):
        with self._lock:
            self.transport.send(connection_id, "allGroups", self._group_list())

    @reports_errors("groupError")
    def join_group(self, connection_id: str, group_name: str):
        user = self._require_user(connection_id)
        membership = self.groups.join(group_name, user.username, connection_id)
        group = membership.group
        self.transport.subscribe(connection_id, group_key(group.name))

        # Repeat joins are announced too; only members connected right now hear it
        for member in group.members:
            if member.connection_id == connection_id or self.identity.by_connection(member.connection_id) is None:
                continue
            self.transport.send(
                member.connection_id, "groupJoined", {"groupName": group.name, "username": user.username}
            )

        self.transport.to_all("allGroups", self._group_list())
        self.transport.send(
            connection_id,
            "groupJoinedSuccess",
            {
                "group": GroupSummary.from_group(group).model_dump(mode="json", by_alias=True),
                "joinTime": membership.joined_at.isoformat(),
            },
        )
        return membership

    def _require_member(self, connection_id: str, group_name: str):
        group = self.groups.get(group_name)
        member = group.member(connection_id) if group is not None else None
        if member is None:
            raise NotGroupMember((group_name or "").strip())
        return group, member

    @reports_errors("groupError")
    def group_message(self, connection_id: str, group_name: str, text: str):
        user = self._require_user(connection_id)
        group, _ = self._require_member(connection_id, group_name)
        channel = group_key(group.name)
        message = self.history.append(channel, self._message(user.username, text))
        self.transport.to_channel(channel, "groupMessage", {"groupName": group.name, "message": message.to_wire()})
        logger.debug(f"Group message from '{user.username}' in '{group.name}'")
        return message

    @reports_errors("groupError")
    def request_group_history(self, connection_id: str, group_name: str):
        self._require_user(connection_id)
        group, member = self._require_member(connection_id, group_name)
        history = self.history.query(group_key(group.name), since=member.joined_at)
        self.transport.send(
            connection_id, "groupHistory", {"groupName": group.name, "messages": [m.to_wire() for m in history]}
        )
        return history

    # Preferences

    def change_theme(self, connection_id: str, theme: Optional[str]):
        with self._lock:
            user = self.identity.by_connection(connection_id)
            if user is None or theme not in self.valid_themes:
                logger.warning(f"Ignoring theme change to '{theme}' from connection {connection_id}")
                return None
            self.themes.set_theme(user.username, theme)
            self.transport.send(connection_id, "themePreference", {"theme": theme})
            logger.info(f"User '{user.username}' changed theme to {theme}")
            return theme


_message_text = TypeAdapter(str)


def _text(data) -> str:
    # chatMessage carries bare text; {"message": text} is accepted too
    if isinstance(data, dict):
        data = data.get("message")
    return _message_text.validate_python(data)
