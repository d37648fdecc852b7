import pytest
from google.oauth2 import id_token

from creditledger.core.config import get_settings
from creditledger.core.exceptions import InvalidCredentialError
from creditledger.core.security import create_session_token
from creditledger.services.identity import resolve_identity


def test_session_token_resolves_identity():
    token = create_session_token({"sub": "abc", "email": "Reader@Example.COM", "name": "Reader"})
    identity = resolve_identity(token)
    assert identity.account_id == "abc"
    assert identity.email == "reader@example.com"
    assert identity.display_name == "Reader"


def test_display_name_defaults_to_email_local_part():
    token = create_session_token({"sub": "abc", "email": "reader@example.com"})
    assert resolve_identity(token).display_name == "reader"


def test_missing_subject_is_rejected():
    token = create_session_token({"email": "reader@example.com"})
    with pytest.raises(InvalidCredentialError):
        resolve_identity(token)


@pytest.mark.parametrize("credential", ["", "   ", "not-a-token", "a.b.c"])
def test_unverifiable_credentials_are_rejected(credential):
    with pytest.raises(InvalidCredentialError):
        resolve_identity(credential)


def test_tampered_session_token_is_rejected():
    token = create_session_token({"sub": "abc", "email": "reader@example.com"})
    with pytest.raises(InvalidCredentialError):
        resolve_identity("x" + token[1:])


def test_firebase_verification_failure_is_invalid_credential(monkeypatch):
    def reject(*args, **kwargs):
        raise ValueError("Token expired")

    monkeypatch.setattr(get_settings(), "identity_provider", "firebase")
    monkeypatch.setattr(id_token, "verify_firebase_token", reject)
    with pytest.raises(InvalidCredentialError):
        resolve_identity("eyJhbGciOiJSUzI1NiJ9.eyJzdWIiOiJ4In0.sig")


def test_firebase_claims_are_used_after_verification(monkeypatch):
    seen = {}

    def verify(token, request, audience=None):
        seen["token"] = token
        return {"sub": "firebase-uid", "email": "fan@example.com", "name": "Fan"}

    monkeypatch.setattr(get_settings(), "identity_provider", "firebase")
    monkeypatch.setattr(id_token, "verify_firebase_token", verify)
    identity = resolve_identity("signed-token")
    assert seen["token"] == "signed-token"
    assert identity.account_id == "firebase-uid"
