class ChatError(Exception):
    """Base class for every rejection surfaced to a client.

    ``str(error)`` is the text sent back on the error event.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    pass


class ConflictError(ChatError):
    pass


class NotFoundError(ChatError):
    pass


class AuthorizationError(ChatError):
    pass


class StateError(ChatError):
    pass


class InvalidIdentity(ValidationError):
    pass


class RoomRequired(ValidationError):
    def __init__(self, message: str = "Room is required"):
        super().__init__(message)


class InvalidGroupName(ValidationError):
    def __init__(self, message: str = "Group name is required"):
        super().__init__(message)


class CannotMessageSelf(ValidationError):
    def __init__(self, message: str = "You cannot send a message to yourself"):
        super().__init__(message)


class UsernameTaken(ConflictError):
    def __init__(self, username: str):
        super().__init__(f'Username "{username}" is already taken. Please choose a different username.')
        self.username = username


class GroupExists(ConflictError):
    def __init__(self, name: str):
        super().__init__(f'Group "{name}" already exists')
        self.name = name


class GroupNotFound(NotFoundError):
    def __init__(self, name: str):
        super().__init__(f'Group "{name}" not found')
        self.name = name


class RecipientOffline(NotFoundError):
    def __init__(self, username: str):
        super().__init__(f"User {username} is not online")
        self.username = username


class NotGroupMember(AuthorizationError):
    def __init__(self, name: str):
        super().__init__(f'You are not a member of group "{name}"')
        self.name = name


class NotInRoom(StateError):
    def __init__(self, message: str = "You are not in a room"):
        super().__init__(message)
