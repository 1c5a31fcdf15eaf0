"""JWT handling for staff identification."""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from admission.config import settings

TOKEN_TYPE = "staff_access"


def create_access_token(
    actor_id: str,
    expires_delta: timedelta | None = None,
    **claims: Any,
) -> str:
    """
    Issue a bearer token identifying a staff member.

    Tokens are normally issued by the clinic's identity service; this is used
    by scripts and tests.

    Args:
        actor_id: Staff identifier stored as ``sub``
        expires_delta: Optional lifetime; defaults to the configured expiry
        **claims: Extra claims to embed

    Returns:
        Encoded JWT
    """
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)

    payload = {
        **claims,
        "sub": actor_id,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a staff bearer token.

    Args:
        token: JWT to decode

    Returns:
        Decoded payload or None if invalid, expired or of another type
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    if payload.get("type") != TOKEN_TYPE:
        return None

    return payload
