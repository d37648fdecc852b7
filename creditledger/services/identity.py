"""Identity resolver: verified bearer credential -> (account id, email, display name).

Claims are only read after the credential's signature has been verified; there
is no unverified decoding path.
"""

from dataclasses import dataclass

from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from creditledger.core.config import get_settings
from creditledger.core.exceptions import InvalidCredentialError
from creditledger.core.logging import get_logger
from creditledger.core.security import load_session_token

log = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    account_id: str
    email: str
    display_name: str


def verify_credential(credential: str) -> dict:
    """Verify the credential with the configured provider; return its claims."""
    settings = get_settings()
    provider = settings.identity_provider
    if provider == "session":
        claims = load_session_token(credential)
        if claims is None:
            raise InvalidCredentialError("Invalid or expired session token")
        return claims
    try:
        if provider == "google":
            return id_token.verify_oauth2_token(credential, google_requests.Request(), settings.google_client_id)
        return id_token.verify_firebase_token(
            credential,
            google_requests.Request(),
            audience=settings.firebase_project_id or None,
        )
    except (ValueError, google_exceptions.GoogleAuthError) as e:
        log.info("credential_rejected", provider=provider, reason=str(e)[:200])
        raise InvalidCredentialError(f"Invalid {provider} token") from e


def resolve_identity(credential: str) -> Identity:
    if not credential or not credential.strip():
        raise InvalidCredentialError("Missing credential")
    claims = verify_credential(credential.strip())
    if not isinstance(claims, dict):
        raise InvalidCredentialError("Credential carries no claims")
    subject = claims.get("sub")
    if not subject or not isinstance(subject, str):
        raise InvalidCredentialError("Credential has no subject")
    email = (claims.get("email") or "").strip().lower()
    name = claims.get("name") or (email.split("@")[0] if email else "")
    return Identity(account_id=subject, email=email, display_name=name)
