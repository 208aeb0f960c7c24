import pytest

from chat.auth import AuthError, AuthService, hash_password, to_email, verify_password


@pytest.mark.parametrize(
    "login, email",
    [("alice", "alice@example.com"), ("  bob  ", "bob@example.com"), ("carol@mail.jp", "carol@mail.jp")],
)
def test_login_ids_are_normalised_to_email(login, email):
    assert to_email(login) == email


def test_password_hash_round_trip():
    stored = hash_password("secret1")
    assert stored.startswith("sha256$")
    assert verify_password("secret1", stored)
    assert not verify_password("secret2", stored)
    assert not verify_password("secret1", "not-a-hash")


def test_sign_up_then_sign_in(store):
    auth = AuthService(store)
    created = auth.sign_up("alice", "secret1")
    auth.sign_out()
    assert auth.current_user is None

    signed_in = auth.sign_in("alice@example.com", "secret1")
    assert signed_in == created
    assert auth.current_user == created


def test_short_password_is_rejected(store):
    with pytest.raises(AuthError):
        AuthService(store).sign_up("alice", "abc")
    assert store.find_user("alice@example.com") is None


def test_duplicate_sign_up_is_rejected(store):
    AuthService(store).sign_up("alice", "secret1")
    with pytest.raises(AuthError):
        AuthService(store).sign_up("alice@example.com", "another1")


def test_unknown_user_cannot_sign_in(store):
    with pytest.raises(AuthError):
        AuthService(store).sign_in("nobody", "secret1")
