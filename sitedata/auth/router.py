import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.auth.schemas import CurrentUserOut, ServiceHealthOut
from sitedata.auth.security import IdentityClaims
from sitedata.auth.service import UserService
from sitedata.common.dependencies import get_identity
from sitedata.common.exceptions import BadRequestError
from sitedata.db.postgres import get_pg_session

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/me", response_model=CurrentUserOut)
async def get_me(
    identity: IdentityClaims = Depends(get_identity),
    session: AsyncSession = Depends(get_pg_session),
):
    """Return the caller's profile, creating the local user on first call."""
    if not identity.email:
        raise BadRequestError(detail="Email claim not found in token")

    service = UserService(session)
    user = await service.get_or_create_user_from_identity(
        identity.sub, identity.issuer, identity.email, identity.name
    )
    out = CurrentUserOut.model_validate(user)
    out.company_name = await service.get_company_name(user)
    return out


@router.get("/health", response_model=ServiceHealthOut)
async def users_health():
    return ServiceHealthOut(
        status="healthy",
        service="users",
        timestamp=datetime.now(timezone.utc),
    )
