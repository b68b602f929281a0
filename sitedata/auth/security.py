from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from sitedata.config import settings

ACCESS_TOKEN_EXPIRE_MINUTES = 60


class IdentityClaims(BaseModel):
    """Identity-provider claims needed to resolve a local user."""

    sub: Optional[str] = None
    issuer: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token shaped like the identity provider's (local development and tests)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    if settings.JWT_AUDIENCE and "aud" not in to_encode:
        to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _first_claim(payload: dict, *names: str) -> Optional[str]:
    for name in names:
        value = payload.get(name)
        # B2C-style tokens carry "emails" as a list
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            return str(value)
    return None


def verify_token(token: str) -> Optional[IdentityClaims]:
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options={"verify_aud": settings.JWT_AUDIENCE is not None},
        )
    except JWTError:
        return None

    return IdentityClaims(
        sub=_first_claim(payload, "sub", "oid"),
        issuer=_first_claim(payload, "iss"),
        email=_first_claim(payload, "email", "emails", "preferred_username"),
        name=_first_claim(payload, "name", "given_name"),
    )
