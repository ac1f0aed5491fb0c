"""JWT claim decoding without signature verification.

Access tokens handed to us by the provider's token endpoint (over TLS) or
loaded from our own session records are trusted for their claims; only the
structure and the expiry are checked here. Signature verification is the
provider's concern.
"""

from __future__ import annotations

import time
from typing import Any

import structlog
from authlib.common.encoding import json_loads, urlsafe_b64decode
from authlib.jose import JWTClaims
from authlib.jose.errors import ExpiredTokenError, InvalidClaimError

from scopeauth.errors import AuthenticationError

logger = structlog.get_logger()


def _decode_segment(segment: str) -> dict[str, Any]:
    decoded = json_loads(urlsafe_b64decode(segment.encode("ascii")))
    if not isinstance(decoded, dict):
        raise ValueError("JWT segment is not a JSON object")
    return decoded


def decode_unverified(token: str) -> JWTClaims:
    """Parse a compact JWT into claims without checking its signature.

    Args:
        token: Compact serialized JWT (header.payload.signature)

    Returns:
        The payload as JWTClaims (a dict) with the header attached

    Raises:
        AuthenticationError: If the token is not a well-formed JWT
    """
    if not token or not isinstance(token, str):
        raise AuthenticationError("Invalid token")
    parts = token.split(".")
    if len(parts) != 3:
        raise AuthenticationError("Invalid token")
    try:
        header = _decode_segment(parts[0])
        payload = _decode_segment(parts[1])
    except (ValueError, UnicodeError, TypeError) as e:
        raise AuthenticationError("Invalid token") from e
    return JWTClaims(payload, header)


def check_expiry(claims: JWTClaims, now: float | None = None) -> None:
    """Reject claims whose ``exp`` is missing, non-numeric or in the past.

    Raises:
        AuthenticationError: If the token is expired or has no usable exp
    """
    if "exp" not in claims:
        raise AuthenticationError("Token has no expiry")
    if now is None:
        now = time.time()
    try:
        claims.validate_exp(int(now), 0)
    except ExpiredTokenError as e:
        raise AuthenticationError("Token expired") from e
    except InvalidClaimError as e:
        raise AuthenticationError("Token has invalid expiry") from e


def decode_claims(token: str, now: float | None = None) -> JWTClaims:
    """Decode a token and check that it has not expired."""
    claims = decode_unverified(token)
    check_expiry(claims, now)
    return claims


def token_identity(claims: dict[str, Any]) -> str | None:
    """User identity carried by the claims: ``sub``, falling back to ``email``."""
    identity = claims.get("sub") or claims.get("email")
    return str(identity) if identity else None


def is_expired(token: str, now: float | None = None) -> bool:
    """True when the token is unusable: malformed, missing exp, or expired."""
    try:
        decode_claims(token, now)
    except AuthenticationError:
        return True
    return False
