"""JWT helpers for bearer authentication."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import jwt

from wiki_moderation.core.settings import settings


def create_access_token(subject: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose ``sub`` claim is a user name.

    Args:
        subject: Name of the user the token identifies.
        extra_claims: Additional claims to embed.

    Returns:
        The encoded token.
    """
    to_encode: dict[str, object] = {"sub": subject}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> str | None:
    """Return the user name carried by ``token``, or None if it has no subject.

    Raises:
        jose.JWTError: The token is malformed, expired or badly signed.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    return subject if isinstance(subject, str) else None
