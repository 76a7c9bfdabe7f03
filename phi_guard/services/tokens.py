"""
Credential Tokens

Create and verify the signed JWTs used as bearer credentials.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from phi_guard.models.actor import Actor
from phi_guard.utils.config import Settings
from phi_guard.utils.errors import ExpiredCredential, InvalidCredential


ACCESS = "access"
REFRESH = "refresh"


def create_access_token(actor: Actor, settings: Settings, now: Optional[datetime] = None) -> str:
    """
    Create a new access token.

    `iat` keeps sub-second precision so a token minted right after a
    credential change is not mistaken for one minted before it.
    """
    now = now or datetime.now(timezone.utc)
    expire = now + timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS)

    payload = {
        "sub": actor.actor_id,
        "role": actor.role.value,
        "iat": now.timestamp(),
        "exp": expire,
        "type": ACCESS,
        "jti": str(uuid4()),
    }

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_refresh_token(actor: Actor, settings: Settings, now: Optional[datetime] = None) -> str:
    """Create a new refresh token, signed with the refresh secret."""
    now = now or datetime.now(timezone.utc)
    expire = now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    payload = {
        "sub": actor.actor_id,
        "iat": now.timestamp(),
        "exp": expire,
        "type": REFRESH,
        "jti": str(uuid4()),
    }

    return jwt.encode(payload, settings.JWT_REFRESH_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, settings: Settings, token_type: str = ACCESS) -> dict:
    """
    Verify and decode a token.

    Raises:
        ExpiredCredential: If the token is past its expiry
        InvalidCredential: On bad signature, structure, claims or type
    """
    secret = settings.JWT_REFRESH_SECRET_KEY if token_type == REFRESH else settings.JWT_SECRET_KEY
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "iat", "exp", "type"]},
        )
    except ExpiredSignatureError:
        raise ExpiredCredential("Token has expired")
    except InvalidTokenError:
        raise InvalidCredential("Invalid token")

    if payload.get("type") != token_type:
        raise InvalidCredential("Invalid token type")
    if not isinstance(payload.get("sub"), str) or not isinstance(payload.get("iat"), (int, float)):
        raise InvalidCredential("Invalid token claims")

    return payload


def issued_before(payload: dict, moment: Optional[datetime]) -> bool:
    """True if the token was issued before `moment`"""
    if moment is None:
        return False
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return float(payload["iat"]) < moment.timestamp()


def access_token_expiry_seconds(settings: Settings) -> int:
    return settings.ACCESS_TOKEN_EXPIRE_HOURS * 3600
