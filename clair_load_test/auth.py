from __future__ import annotations

import base64
import binascii
import datetime

import jwt

ISSUER = "clairctl"
TOKEN_LIFETIME = datetime.timedelta(minutes=10)


class TokenError(Exception):
    """Raised when a bearer token cannot be minted from the pre-shared key."""


def create_token(psk: str, now: datetime.datetime | None = None) -> str:
    """Mint an HS256 JWT accepted by Clair's PSK authentication.

    ``psk`` is the base64 encoded key configured in Clair (``auth.psk.key``).
    """
    if not psk:
        raise TokenError("no pre-shared key configured")
    try:
        key = base64.b64decode(psk, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TokenError("pre-shared key is not valid base64") from exc

    issued_at = now or datetime.datetime.now(tz=datetime.timezone.utc)
    claims = {
        "iss": ISSUER,
        "iat": issued_at,
        "nbf": issued_at,
        "exp": issued_at + TOKEN_LIFETIME,
    }
    try:
        return jwt.encode(claims, key, algorithm="HS256")
    except jwt.PyJWTError as exc:
        raise TokenError(f"failed to sign token: {exc}") from exc


__all__ = ["ISSUER", "TokenError", "create_token"]
