import pytest

from tutorcart.core.enums import OwnerType
from tutorcart.core.identity import Owner


def test_user_and_session_are_distinct_owners():
    user = Owner.user("abc")
    session = Owner.session("abc")
    assert user != session
    assert user.key == "user:abc"
    assert session.key == "session:abc"
    assert user.is_user and not session.is_user


def test_kind_coerced_from_string():
    owner = Owner("session", "s-1")
    assert owner.kind is OwnerType.SESSION
    assert owner == Owner.session("s-1")
    assert hash(owner) == hash(Owner.session("s-1"))


def test_filter_matches_persisted_columns():
    assert Owner.user("u-1").as_filter() == {"owner_type": "user", "owner_id": "u-1"}


@pytest.mark.parametrize("bad_id", ["", "   "])
def test_empty_id_rejected(bad_id):
    with pytest.raises(ValueError):
        Owner.user(bad_id)


def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        Owner("robot", "r-1")
