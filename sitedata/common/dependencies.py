from typing import Callable

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.auth.security import IdentityClaims, verify_token
from sitedata.auth.service import UserService
from sitedata.common.exceptions import ForbiddenError, UnauthorizedError
from sitedata.config import settings
from sitedata.db.enums import UserRole
from sitedata.db.models import User
from sitedata.db.postgres import get_pg_session

security = HTTPBearer()


async def get_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> IdentityClaims:
    """Decode the bearer token; the subject and issuer claims are mandatory."""
    claims = verify_token(credentials.credentials)
    if claims is None:
        raise UnauthorizedError()
    if not claims.sub:
        raise UnauthorizedError(detail="User identifier (sub) not found in token")
    if not claims.issuer:
        raise UnauthorizedError(detail="Issuer (iss) not found in token")
    return claims


async def get_current_user(
    identity: IdentityClaims = Depends(get_identity),
    session: AsyncSession = Depends(get_pg_session),
) -> User:
    """Look up the local user for the token's identity.

    Users are provisioned by ``GET /api/users/me``; an identity that has never
    called it is rejected here.
    """
    user = await UserService(session).get_user_by_identity(identity.sub, identity.issuer)
    if user is None:
        raise UnauthorizedError(detail="User not found")
    return user


async def verify_api_key(x_api_key: str = Header(default="")) -> str:
    """Validate X-API-Key header for service-to-service requests.

    Enforcement is skipped when INTERNAL_API_KEY is unset or equals 'dev_key'.
    """
    key = settings.INTERNAL_API_KEY
    if key and key != "dev_key":
        if x_api_key != key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API key",
            )
    return x_api_key


def require_global_role(*allowed_roles: UserRole) -> Callable:
    """Dependency factory: raises 403 if the user's global role is not in allowed_roles.

    SuperUser implicitly passes any role check.
    """
    async def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role == UserRole.SUPER_USER:
            return current_user
        if current_user.role not in allowed_roles:
            raise ForbiddenError(detail=f"Role '{current_user.role.value}' not permitted")
        return current_user
    return _check
