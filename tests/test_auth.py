"""Tests for staff identity."""
import pytest

from counter_pos.core.auth import (
    SessionIdentity,
    StaticIdentity,
    UsernameExistsError,
    create_user,
    verify_password,
)


def test_static_identity():
    assert StaticIdentity(" till-2 ").current_actor() == "till-2"
    assert StaticIdentity("").current_actor() is None


def test_sign_in_by_username_or_email(database):
    create_user(database, "sami", "s3cret", email="Sami@Example.com")
    identity = SessionIdentity(database)
    assert identity.current_actor() is None

    assert identity.sign_in("sami", "wrong") is None
    assert identity.current_actor() is None

    assert identity.sign_in("sami", "s3cret").username == "sami"
    identity.sign_out()
    assert identity.sign_in("sami@example.com", "s3cret").email == "sami@example.com"
    assert identity.current_actor() == "sami"


def test_unknown_user_cannot_sign_in(database):
    assert SessionIdentity(database).sign_in("nobody", "x") is None


def test_create_user_rejects_duplicates_and_blanks(database):
    create_user(database, "rana", "pw")
    with pytest.raises(UsernameExistsError):
        create_user(database, "rana", "other")
    with pytest.raises(ValueError):
        create_user(database, " ", "pw")
    with pytest.raises(ValueError):
        create_user(database, "lina", "  ")


def test_passwords_are_stored_as_pbkdf2_hashes(database):
    create_user(database, "lina", "open-sesame")
    with database.transaction("BEGIN") as conn:
        stored = conn.execute("SELECT password_hash FROM users WHERE username=?", ("lina",)).fetchone()[0]
    assert stored.startswith("$pbkdf2-sha256$")
    assert "open-sesame" not in stored
    assert verify_password("open-sesame", stored)
    assert not verify_password("open-sesame", "not-a-hash")
