"""Security utilities — JWT verification for the bearer auth boundary.

Tokens are issued by the external identity service; ``create_access_token``
exists for tests and operator tooling.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from imagebroker.domain.exceptions import AuthenticationError


# ── JWT ──────────────────────────────────────────────────────
def create_access_token(
    data: dict[str, Any],
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: int = 30,
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc
    if payload.get("type", "access") != "access":
        raise AuthenticationError("Token is not an access token")
    if not payload.get("sub"):
        raise AuthenticationError("Token has no subject")
    return payload  # type: ignore[no-any-return]
