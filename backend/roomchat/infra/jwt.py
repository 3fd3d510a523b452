"""Access-token codec.

The account service issues HS256 tokens signed with SECRET_KEY; the relay
only verifies them. `encode_access` exists for tooling and tests.
"""

from __future__ import annotations

import time
from typing import Any, Dict

import jwt
from jwt import InvalidTokenError

from roomchat.settings import settings

ISSUER = "roomchat-api"
AUDIENCE = "roomchat-fe"
ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 15 * 60
CLOCK_SKEW_SECONDS = 5

_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


def encode_access(claims: Dict[str, Any], *, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> str:
    issued_at = int(time.time())
    body: Dict[str, Any] = {
        "iss": ISSUER,
        "aud": AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
        **claims,
    }
    return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> Dict[str, Any]:
    """Verify signature, issuer, audience and expiry. Raises jwt.InvalidTokenError."""
    claims = jwt.decode(
        token,
        settings.secret_key,
        algorithms=[ALGORITHM],
        audience=AUDIENCE,
        issuer=ISSUER,
        leeway=CLOCK_SKEW_SECONDS,
        options={"require": _REQUIRED_CLAIMS},
    )
    # Display name is rendered next to every message
    if not claims.get("name"):
        raise InvalidTokenError("missing_claim:name")
    return claims
