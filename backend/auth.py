"""
Bearer token helpers for the portal API

Tokens are HS256 JWTs carrying {sub, did, role, exp}.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any

import jwt

from did_health.config import DIDSettings
from did_health.did_manager import Principal
from did_health.errors import DIDHealthError

ALGORITHM = "HS256"


class Unauthorized(DIDHealthError):
    """Missing, malformed or expired bearer token"""

    kind = "unauthorized"


def create_token(principal: Principal, settings: DIDSettings) -> str:
    payload = {
        "sub": principal.id,
        "did": principal.did_identifier,
        "role": principal.role.value,
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS)
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str, settings: DIDSettings) -> Dict[str, Any]:
    if not token:
        raise Unauthorized("Access token required")
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired") from None
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token") from None
