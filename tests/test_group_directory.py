import pytest

from services.errors import GroupExists, GroupNotFound, InvalidGroupName
from services.group_directory import GroupDirectory


@pytest.fixture
def directory(clock):
    return GroupDirectory(clock=clock)


def test_create_adds_creator_as_only_member(directory):
    membership = directory.create(" devs ", "alice", "c1")

    assert membership.group.name == "devs"
    assert [m.username for m in membership.group.members] == ["alice"]
    assert membership.group.members[0].joined_at == membership.joined_at
    assert membership.is_new


def test_create_rejects_blank_names(directory):
    with pytest.raises(InvalidGroupName):
        directory.create("  ", "alice", "c1")


def test_create_rejects_duplicates_case_insensitively(directory):
    directory.create("devs", "alice", "c1")

    with pytest.raises(GroupExists):
        directory.create("DEVS", "bob", "c2")


def test_join_unknown_group(directory):
    with pytest.raises(GroupNotFound):
        directory.join("nope", "bob", "c2")


def test_join_appends_member(directory):
    directory.create("devs", "alice", "c1")

    membership = directory.join("Devs", "bob", "c2")

    assert membership.is_new
    assert [m.username for m in membership.group.members] == ["alice", "bob"]
    assert directory.is_member("devs", "c2")


def test_join_is_idempotent_for_existing_member(directory):
    created = directory.create("devs", "alice", "c1")

    again = directory.join("devs", "alice", "c1")

    assert not again.is_new
    assert again.joined_at == created.joined_at
    assert len(again.group.members) == 1


def test_leave_removes_member(directory):
    directory.create("devs", "alice", "c1")
    directory.join("devs", "bob", "c2")

    assert directory.leave("devs", "c2") is True
    assert not directory.is_member("devs", "c2")
    assert directory.leave("devs", "c2") is False
    assert directory.leave("missing", "c1") is False


def test_last_member_leaving_deletes_group(directory):
    directory.create("temp", "alice", "c1")

    assert directory.leave("temp", "c1") is True

    assert directory.get("temp") is None
    assert directory.all() == []
    # Name is free again
    directory.create("temp", "bob", "c2")


def test_leave_all_removes_connection_everywhere(directory):
    directory.create("devs", "alice", "c1")
    directory.create("ops", "bob", "c2")
    directory.join("ops", "alice", "c1")
    directory.create("solo", "alice", "c1")

    left = directory.leave_all("c1")

    assert sorted(left) == ["devs", "ops", "solo"]
    assert [g.name for g in directory.all()] == ["ops"]
    assert directory.get("ops").members[0].username == "bob"


def test_all_never_lists_empty_groups_or_connection_ids(directory):
    directory.create("devs", "alice", "c1")
    directory.join("devs", "bob", "c2")
    directory.create("temp", "carol", "c3")
    directory.leave("temp", "c3")

    snapshot = [g.model_dump(by_alias=True) for g in directory.all()]

    assert snapshot == [{"name": "devs", "members": ["alice", "bob"], "memberCount": 2}]
    assert all(g["memberCount"] > 0 for g in snapshot)
    assert "c1" not in repr(snapshot)


def test_member_lookup(directory):
    created = directory.create("devs", "alice", "c1")

    assert directory.member("DEVS", "c1").joined_at == created.joined_at
    assert directory.member("devs", "c9") is None
    assert directory.member("nope", "c1") is None
    assert not directory.is_member("nope", "c1")


def test_rename_updates_member_name_and_keeps_join_time(directory):
    created = directory.create("devs", "alice", "c1")
    directory.join("devs", "bob", "c2")
    directory.create("ops", "bob", "c2")

    assert directory.rename("c1", "alice2") == ["devs"]
    assert directory.rename("c1", "alice2") == []

    assert directory.member("devs", "c1").username == "alice2"
    assert directory.member("devs", "c1").joined_at == created.joined_at
    assert directory.all()[0].members == ["alice2", "bob"]
