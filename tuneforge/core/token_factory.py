"""Pure functions for creating and decoding HS256 JWT access tokens.

No state: the auth dependency decodes, the login endpoint encodes.
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

ISSUER = "tuneforge"


@dataclass(frozen=True)
class TokenPayload:
    """Decoded JWT payload. Immutable."""
    sub: str
    role: str
    exp: datetime


def create_token(
    subject: str,
    role: str,
    secret: str,
    algorithm: str = "HS256",
    expires_hours: int = 24,
) -> str:
    """Create a signed JWT for *subject* carrying a *role* claim.

    Raises:
        ValueError: for any algorithm other than HS256.
    """
    if algorithm != "HS256":
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    issued_at = int(time.time())
    header = {"alg": algorithm, "typ": "JWT"}
    claims = {
        "sub": subject,
        "role": role,
        "iat": issued_at,
        "exp": issued_at + expires_hours * 3600,
        "iss": ISSUER,
    }
    signing_input = _b64encode(_to_json(header)) + b"." + _b64encode(_to_json(claims))
    return (signing_input + b"." + _b64encode(_sign(signing_input, secret))).decode()


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> Optional[TokenPayload]:
    """Decode and validate a JWT.

    Returns ``None`` on any failure (bad signature, wrong issuer, expired,
    malformed); callers decide what absence means.
    """
    if algorithm != "HS256":
        return None
    try:
        header_b64, claims_b64, signature_b64 = token.encode().split(b".")
    except ValueError:
        return None

    try:
        expected = _sign(header_b64 + b"." + claims_b64, secret)
        if not hmac.compare_digest(expected, _b64decode(signature_b64)):
            return None

        claims = json.loads(_b64decode(claims_b64))
        if claims.get("iss") != ISSUER:
            return None

        exp = int(claims.get("exp", 0))
        if time.time() > exp:
            return None

        return TokenPayload(
            sub=str(claims.get("sub", "")),
            role=str(claims.get("role", "")),
            exp=datetime.fromtimestamp(exp, tz=timezone.utc),
        )
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def _sign(signing_input: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()


def _to_json(data: dict) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode()


def _b64encode(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data).rstrip(b"=")


def _b64decode(data: bytes) -> bytes:
    return base64.urlsafe_b64decode(data + b"=" * (-len(data) % 4))
