"""Deterministic channel keys for rooms, private pairs and groups.

Every history log and every transport subscription is addressed by the key
returned from :func:`derive`.
"""
from typing import NamedTuple, Union

ROOM_PREFIX = "room:"
PRIVATE_PREFIX = "pm:"
GROUP_PREFIX = "group:"
PRIVATE_SEPARATOR = "|"


class Room(NamedTuple):
    name: str


class Private(NamedTuple):
    user_a: str
    user_b: str


class Group(NamedTuple):
    name: str


ChannelDescriptor = Union[Room, Private, Group]


def derive(descriptor: ChannelDescriptor) -> str:
    if isinstance(descriptor, Room):
        return ROOM_PREFIX + descriptor.name
    if isinstance(descriptor, Private):
        # Sorted so both participants address the same log
        return PRIVATE_PREFIX + PRIVATE_SEPARATOR.join(sorted((descriptor.user_a, descriptor.user_b)))
    if isinstance(descriptor, Group):
        return GROUP_PREFIX + descriptor.name
    raise TypeError(f"Unknown channel descriptor: {descriptor!r}")


def room_key(name: str) -> str:
    return derive(Room(name))


def private_key(user_a: str, user_b: str) -> str:
    return derive(Private(user_a, user_b))


def group_key(name: str) -> str:
    return derive(Group(name))
