import pytest

from flashpad.database import SessionLocal
from flashpad.errors import Conflict, Forbidden, InvalidRequest, NotFound
from flashpad.models import SandboxShareModel, UserModel
from flashpad.store import normalize_sandbox_name, store


def _user(email, username=None):
    with SessionLocal() as db:
        user = UserModel(email=email, username=username, password_hash="not-a-real-hash")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user.id


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("My Pad!", "my-pad-"),
        ("  notes  ", "notes"),
        ("Team_Notes-2", "team_notes-2"),
        ("café olé", "caf--ol-"),
    ],
)
def test_normalize_sandbox_name(raw, expected):
    assert normalize_sandbox_name(raw) == expected


@pytest.mark.parametrize("raw", ["", "ab", "  a  ", None, 42])
def test_normalize_rejects_short_or_non_string_names(raw):
    with pytest.raises(InvalidRequest):
        normalize_sandbox_name(raw)


def test_create_twice_conflicts():
    owner = _user("owner@example.com")
    record = store.create_sandbox("My Pad!", owner)
    assert record.name == "my-pad-"
    assert record.owner_id == owner

    with pytest.raises(Conflict):
        store.create_sandbox("my pad?", owner)


def test_list_visible_returns_owned_then_shared():
    alice = _user("alice@example.com", "alice")
    bob = _user("bob@example.com", "bob")
    store.create_sandbox("alice-notes", alice)
    store.create_sandbox("bob-notes", bob)
    store.share_sandbox("bob-notes", bob, username="alice")

    visible = store.list_visible(alice)

    assert [(record.name, record.shared) for record in visible] == [
        ("alice-notes", False),
        ("bob-notes", True),
    ]
    assert [record.name for record in store.list_visible(bob)] == ["bob-notes"]


def test_check_access_roles():
    alice = _user("alice@example.com", "alice")
    bob = _user("bob@example.com", "bob")
    carol = _user("carol@example.com")
    store.create_sandbox("notes", alice)
    store.share_sandbox("notes", alice, email="BOB@example.com")

    assert store.check_access("notes", alice) == "owner"
    assert store.check_access("notes", bob) == "viewer"
    with pytest.raises(Forbidden):
        store.check_access("notes", carol)
    with pytest.raises(NotFound):
        store.check_access("missing", alice)


def test_share_rules():
    alice = _user("alice@example.com", "alice")
    bob = _user("bob@example.com", "bob")
    store.create_sandbox("notes", alice)

    with pytest.raises(Forbidden):
        store.share_sandbox("notes", bob, username="alice")
    with pytest.raises(NotFound):
        store.share_sandbox("notes", alice, username="nobody")
    with pytest.raises(NotFound):
        store.share_sandbox("missing", alice, username="bob")
    with pytest.raises(InvalidRequest):
        store.share_sandbox("notes", alice, username="@alice")

    recipient = store.share_sandbox("notes", alice, username="@bob")
    assert recipient.id == bob
    with pytest.raises(Conflict):
        store.share_sandbox("notes", alice, email="bob@example.com")


def test_delete_is_owner_only_and_drops_grants():
    alice = _user("alice@example.com", "alice")
    bob = _user("bob@example.com", "bob")
    store.create_sandbox("notes", alice)
    store.share_sandbox("notes", alice, username="bob")

    with pytest.raises(Forbidden):
        store.delete_sandbox("notes", bob)

    store.delete_sandbox("notes", alice)

    with pytest.raises(NotFound):
        store.get_sandbox("notes")
    with SessionLocal() as db:
        assert db.query(SandboxShareModel).count() == 0
    with pytest.raises(NotFound):
        store.delete_sandbox("notes", alice)
