from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from app.config import settings
from app.services.errors import ProviderError


class TokenError(ProviderError):
    pass


@dataclass(frozen=True)
class CredentialData:
    uid: str
    email: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_custom_token(uid: str, email: str) -> str:
    if not settings.jwt_secret:
        raise TokenError("JWT secret is not configured")
    now = _utcnow()
    expires_at = now + timedelta(minutes=settings.credential_expire_minutes)
    payload = {
        "iss": settings.credential_issuer,
        "sub": uid,
        "uid": uid,
        "email": email,
        "type": "custom",
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_custom_token(token: str) -> CredentialData:
    if not token:
        raise TokenError("Token is missing")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.credential_issuer,
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc
    if payload.get("type") != "custom":
        raise TokenError("Invalid token type")
    uid = payload.get("uid")
    if not uid:
        raise TokenError("Token subject is missing")
    return CredentialData(uid=uid, email=payload.get("email", ""))
