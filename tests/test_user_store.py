"""Unit tests for auth/store.py -- the users repository.

Covers:
- insert / find_by_email / list_all round trips
- find_all_by_email exposes duplicate emails (no unique index)
- update_role stores any string and reports rows matched
"""

import pytest

from auth.models import ROLE_ADMIN, ROLE_MEMBER, User
from auth.store import UserStore


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


def _user(name: str, email: str, role: str = ROLE_MEMBER) -> User:
    return User(name=name, email=email, hashed_password="$2b$04$hash", role=role)


def test_insert_then_find_by_email(store: UserStore) -> None:
    uid = store.insert(_user("Ann", "ann@x.com"))
    found = store.find_by_email("ann@x.com")
    assert found is not None
    assert found.id == uid
    assert (found.name, found.email, found.role) == ("Ann", "ann@x.com", ROLE_MEMBER)
    assert found.hashed_password == "$2b$04$hash"


def test_find_by_email_is_exact(store: UserStore) -> None:
    store.insert(_user("Ann", "ann@x.com"))
    assert store.find_by_email("ANN@x.com") is None
    assert store.find_by_email("bob@x.com") is None


def test_list_all_returns_whole_collection_in_insertion_order(store: UserStore) -> None:
    for i in range(5):
        store.insert(_user(f"U{i}", f"u{i}@x.com"))
    assert [u.name for u in store.list_all()] == ["U0", "U1", "U2", "U3", "U4"]
    assert store.count() == 5


def test_duplicate_emails_are_not_rejected_by_the_store(store: UserStore) -> None:
    """Uniqueness is an application-level check; the store itself accepts duplicates."""
    store.insert(_user("Ann", "ann@x.com"))
    store.insert(_user("Ann2", "ann@x.com"))
    assert len(store.find_all_by_email("ann@x.com")) == 2
    assert store.find_by_email("ann@x.com").name == "Ann"


def test_update_role_accepts_arbitrary_strings(store: UserStore) -> None:
    store.insert(_user("Ann", "ann@x.com"))
    assert store.update_role("ann@x.com", "superuser") == 1
    assert store.find_by_email("ann@x.com").role == "superuser"
    assert store.update_role("ann@x.com", ROLE_ADMIN) == 1
    assert store.find_by_email("ann@x.com").role == ROLE_ADMIN


def test_update_role_unknown_email_matches_nothing(store: UserStore) -> None:
    store.insert(_user("Ann", "ann@x.com"))
    assert store.update_role("ghost@x.com", ROLE_ADMIN) == 0
    assert store.find_by_email("ann@x.com").role == ROLE_MEMBER


def test_ping(store: UserStore) -> None:
    assert store.ping() is True


def test_identity_snapshot_from_user() -> None:
    identity = _user("Ann", "ann@x.com", role=ROLE_ADMIN).identity()
    assert identity.to_payload() == {"name": "Ann", "email": "ann@x.com", "userType": ROLE_ADMIN}
