from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

from ..config import get_settings

REQUIRED_CLAIMS = ("sub", "exp")


def create_access_token(
    *,
    user_id: str,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or timedelta(minutes=30)),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def issue_token_for(user_id: str) -> str:
    """Sign a token for `user_id` with the configured secret and lifetime."""
    settings = get_settings()
    return create_access_token(
        user_id=user_id,
        secret=settings.auth_secret,
        algorithm=settings.auth_algorithm,
        expires_delta=timedelta(minutes=settings.access_token_minutes),
    )


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> str:
    """Return the user id carried in `sub`. Raises ValueError for any invalid token."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except InvalidTokenError as exc:
        # Expired, badly signed and claim-less tokens all land here.
        raise ValueError("invalid token") from exc

    user_id = claims["sub"]
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValueError("token subject must be a non-empty user id")
    return user_id
