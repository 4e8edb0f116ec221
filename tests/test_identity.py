from datetime import timedelta

import pytest

from identity import IdentityProviderError, translate_auth_error


def test_sign_up_then_sign_in_and_verify_token(services) -> None:
    identity = services.identity
    user = identity.sign_up(" Alice@Example.com ", "secret-pw")
    assert user.email == "alice@example.com"

    signed_in = identity.sign_in("alice@example.com", "secret-pw")
    assert signed_in.id == user.id
    token = identity.issue_token(signed_in)
    assert identity.verify_token(token).id == user.id


def test_duplicate_email_is_rejected(services) -> None:
    services.identity.sign_up("bob@example.com", "secret-pw")
    with pytest.raises(IdentityProviderError) as excinfo:
        services.identity.sign_up("BOB@example.com", "another-pw")
    assert excinfo.value.code == "auth/email-already-in-use"


def test_weak_password_is_rejected(services) -> None:
    with pytest.raises(IdentityProviderError) as excinfo:
        services.identity.sign_up("carol@example.com", "123")
    assert excinfo.value.code == "auth/weak-password"


def test_wrong_password_is_rejected(services) -> None:
    services.identity.sign_up("dave@example.com", "secret-pw")
    with pytest.raises(IdentityProviderError) as excinfo:
        services.identity.sign_in("dave@example.com", "wrong-pw")
    assert excinfo.value.code == "auth/invalid-credential"


def test_sign_out_revokes_token(services) -> None:
    identity = services.identity
    user = identity.sign_up("erin@example.com", "secret-pw")
    token = identity.issue_token(user)
    identity.sign_out(token)
    with pytest.raises(IdentityProviderError):
        identity.verify_token(token)
    # Other sessions stay valid.
    assert identity.verify_token(identity.issue_token(user)).id == user.id


def test_expired_and_garbage_tokens_are_rejected(services) -> None:
    identity = services.identity
    user = identity.sign_up("frank@example.com", "secret-pw")
    expired = identity.issue_token(user, expires_delta=timedelta(minutes=-1))
    for token in [expired, "not-a-jwt"]:
        with pytest.raises(IdentityProviderError) as excinfo:
            identity.verify_token(token)
        assert excinfo.value.code == "auth/invalid-token"


def test_auth_change_listeners_see_sign_in_and_out(services) -> None:
    identity = services.identity
    events = []
    unsubscribe = identity.on_auth_change(events.append)
    user = identity.sign_up("gina@example.com", "secret-pw")
    identity.sign_out(identity.issue_token(user))
    unsubscribe()
    identity.sign_in("gina@example.com", "secret-pw")

    assert [e.email if e else None for e in events] == ["gina@example.com", None]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Identity: Email already registered (auth/email-already-in-use).", "Email already registered."),
        ("Identity: Incorrect email or password (auth/invalid-credential).", "Incorrect email or password."),
        ("(auth/internal-error)", "Authentication failed."),
    ],
)
def test_translate_auth_error_strips_provider_details(raw, expected) -> None:
    assert translate_auth_error(Exception(raw)).message == expected
