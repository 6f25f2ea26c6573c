"""JWT helpers for bearer-token authentication.

Token issuance belongs to the external identity service; these helpers exist
so the gateway and REST layer share one verification path, and so tooling and
tests can mint tokens signed with the configured secret.
"""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from huddle.core.settings import settings
from huddle.services.errors import AuthenticationFailure


def create_access_token(
    user_id: int,
    extra_claims: dict[str, object] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT whose subject is the user id."""
    to_encode: dict[str, object] = {"sub": str(user_id)}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> int:
    """Verify a bearer token and return the user id it identifies.

    Raises:
        AuthenticationFailure: If the token is malformed, expired, or has no
            integer subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise AuthenticationFailure("Could not validate credentials") from err

    subject = payload.get("sub")
    if subject is None:
        raise AuthenticationFailure("Could not validate credentials")
    try:
        return int(subject)
    except (TypeError, ValueError) as err:
        raise AuthenticationFailure("Could not validate credentials") from err
