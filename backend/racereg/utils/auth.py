"""Access tokens for buyers and coordinators, and one-time invite tokens.

Access tokens are HS256 JWTs whose ``sub`` is the user id and whose ``aud``
names this service. Invite tokens are opaque random strings; only their
sha256 digest is persisted.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

TOKEN_AUDIENCE = "racereg"
INVITE_TOKEN_BYTES = 32


class TokenError(ValueError):
    pass


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
    audience: str = TOKEN_AUDIENCE,
) -> str:
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "aud": audience,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or timedelta(minutes=30)),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
    audience: str = TOKEN_AUDIENCE,
) -> int:
    """Return the user id carried by ``token`` or raise ``TokenError``."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            audience=audience,
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError as exc:
        raise TokenError("invalid token") from exc

    try:
        return int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise TokenError("token sub is not a user id") from exc


def generate_invite_token() -> str:
    return secrets.token_urlsafe(INVITE_TOKEN_BYTES)


def hash_invite_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
