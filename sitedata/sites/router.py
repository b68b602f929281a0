import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.access.service import SiteAuthorizationService
from sitedata.common.dependencies import get_current_user
from sitedata.common.exceptions import ForbiddenError, NotFoundError
from sitedata.config import settings
from sitedata.db.enums import ADMIN_ROLES, WRITE_ROLES
from sitedata.db.models import User
from sitedata.db.postgres import get_pg_session
from sitedata.ingestion.pipeline import DataIngestionService
from sitedata.ingestion.schemas import DataUploadRequest, DataUploadResult
from sitedata.sites import service
from sitedata.sites.schemas import (
    ModelVersionOut,
    SiteDetailOut,
    SiteListOut,
    SiteUserOut,
    UploadSummaryOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def _require_access(session: AsyncSession, user: User, site_id: int) -> None:
    if not await SiteAuthorizationService(session).has_site_access(user.id, site_id):
        raise ForbiddenError(detail="No access to this site")


@router.get("", response_model=list[SiteListOut])
async def list_my_sites(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_pg_session),
):
    sites = await service.list_sites_for_user(session, current_user.id)
    logger.info(f"User {current_user.id} retrieved {len(sites)} accessible sites")
    return sites


@router.get("/{site_id}", response_model=SiteDetailOut)
async def get_site(
    site_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_pg_session),
):
    await _require_access(session, current_user, site_id)

    role = await SiteAuthorizationService(session).get_user_site_role(current_user.id, site_id)
    detail = await service.get_site_detail(session, site_id, role)
    if detail is None:
        raise NotFoundError(detail="Site not found")
    return detail


@router.get("/{site_id}/uploads", response_model=list[UploadSummaryOut])
async def list_site_uploads(
    site_id: int,
    limit: int = Query(settings.UPLOADS_DEFAULT_LIMIT, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_pg_session),
):
    await _require_access(session, current_user, site_id)
    return await service.list_uploads(session, site_id, limit)


@router.post("/{site_id}/data", response_model=DataUploadResult)
async def upload_site_data(
    site_id: int,
    data: DataUploadRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_pg_session),
):
    """Upload daily rows. Responds 400 with the full result when the upload is rejected."""
    access = SiteAuthorizationService(session)
    if not await access.has_site_role(current_user.id, site_id, WRITE_ROLES):
        raise ForbiddenError(detail="Operator role or higher required to upload data")

    if not await service.site_exists(session, site_id):
        raise NotFoundError(detail=f"Site with ID {site_id} not found")

    logger.info(f"User {current_user.id} uploading {len(data.rows)} rows to site {site_id}")

    result = await DataIngestionService(session).process_upload(site_id, current_user.id, data)
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return result


@router.get("/{site_id}/models", response_model=list[ModelVersionOut])
async def list_site_models(
    site_id: int,
    limit: int = Query(settings.MODELS_DEFAULT_LIMIT, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_pg_session),
):
    await _require_access(session, current_user, site_id)
    return await service.list_models(session, site_id, limit)


@router.get("/{site_id}/users", response_model=list[SiteUserOut])
async def list_site_users(
    site_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_pg_session),
):
    access = SiteAuthorizationService(session)
    if not await access.has_site_role(current_user.id, site_id, ADMIN_ROLES):
        raise ForbiddenError(detail="SiteAdmin role or higher required")
    return await service.list_site_users(session, site_id)
