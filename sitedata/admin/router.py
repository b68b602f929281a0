import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.admin import service
from sitedata.admin.schemas import (
    AdminSiteOut,
    AdminUserOut,
    CompanyCreate,
    CompanyOut,
    CompanyUpdate,
    SchemaVersionCreate,
    SchemaVersionOut,
    SiteAccessGrant,
    SiteAccessOut,
    SiteCreate,
    SiteStatusUpdate,
    SiteUpdate,
    UserCreate,
    UserUpdate,
)
from sitedata.common.audit import log_admin_action
from sitedata.common.dependencies import require_global_role
from sitedata.common.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from sitedata.db.enums import SiteStatus, UserRole
from sitedata.db.models import Company, Site, User, UserSiteAccess
from sitedata.db.postgres import get_pg_session

logger = logging.getLogger(__name__)

router = APIRouter()

require_admin = require_global_role(UserRole.ADMIN)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _get_company_or_404(session: AsyncSession, company_id: int) -> Company:
    company = await session.get(Company, company_id)
    if company is None:
        raise NotFoundError(detail=f"Company with ID {company_id} not found")
    return company


async def _get_site_or_404(session: AsyncSession, site_id: int) -> Site:
    site = await session.get(Site, site_id)
    if site is None:
        raise NotFoundError(detail=f"Site with ID {site_id} not found")
    return site


async def _get_user_or_404(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError(detail=f"User with ID {user_id} not found")
    return user


def _check_role_assignment(current_user: User, role: UserRole) -> None:
    if role == UserRole.SUPER_USER and current_user.role != UserRole.SUPER_USER:
        raise ForbiddenError(detail="Only a SuperUser can assign the SuperUser role")


# ---- Companies ----

@router.get("/companies", response_model=list[CompanyOut])
async def list_companies(
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    return await service.list_companies(session)


@router.get("/companies/{company_id}", response_model=CompanyOut)
async def get_company(
    company_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    company = await _get_company_or_404(session, company_id)
    return await service.company_out(session, company)


@router.post("/companies", response_model=CompanyOut, status_code=status.HTTP_201_CREATED)
async def create_company(
    data: CompanyCreate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    if await service.find_company_by_name(session, data.name):
        raise ConflictError(detail=f"A company with name '{data.name}' already exists")

    company = Company(name=data.name, created_at=_utcnow())
    session.add(company)
    await session.flush()

    logger.info(f"Created company {company.id}: {company.name}")
    log_admin_action(current_user, "create_company", "company", company.id, {"name": company.name})
    return await service.company_out(session, company)


@router.patch("/companies/{company_id}", response_model=CompanyOut)
async def update_company(
    company_id: int,
    data: CompanyUpdate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    company = await _get_company_or_404(session, company_id)

    if data.name:
        if await service.find_company_by_name(session, data.name, exclude_id=company_id):
            raise ConflictError(detail=f"A company with name '{data.name}' already exists")
        company.name = data.name

    await session.flush()
    log_admin_action(current_user, "update_company", "company", company_id, {"name": company.name})
    return await service.company_out(session, company)


@router.delete("/companies/{company_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_company(
    company_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    company = await _get_company_or_404(session, company_id)

    reason = await service.company_has_dependents(session, company_id)
    if reason:
        raise BadRequestError(detail=reason)

    await session.delete(company)
    await session.flush()

    logger.info(f"Deleted company {company_id}: {company.name}")
    log_admin_action(current_user, "delete_company", "company", company_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---- Sites ----

@router.get("/sites", response_model=list[AdminSiteOut])
async def list_sites(
    company_id: Optional[int] = Query(None, alias="companyId"),
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    return await service.list_sites(session, company_id)


@router.get("/sites/{site_id}", response_model=AdminSiteOut)
async def get_site(
    site_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    site = await _get_site_or_404(session, site_id)
    return await service.site_out(session, site)


@router.post("/sites", response_model=AdminSiteOut, status_code=status.HTTP_201_CREATED)
async def create_site(
    data: SiteCreate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    if await session.get(Company, data.company_id) is None:
        raise BadRequestError(detail=f"Company with ID {data.company_id} not found")

    if await service.find_site_by_name(session, data.company_id, data.site_name):
        raise ConflictError(
            detail=f"A site named '{data.site_name}' already exists for this company"
        )

    now = _utcnow()
    site = Site(
        company_id=data.company_id,
        site_name=data.site_name,
        location=data.location,
        timezone=data.timezone or "UTC",
        config_json=data.config_json or {},
        status=SiteStatus.PENDING_SETUP,
        onboarding_notes=data.onboarding_notes,
        auto_inference_enabled=data.auto_inference_enabled,
        inference_schedule=data.inference_schedule,
        auto_retraining_enabled=data.auto_retraining_enabled,
        retraining_frequency_days=data.retraining_frequency_days,
        train_on_every_upload=data.train_on_every_upload,
        created_at=now,
        updated_at=now,
    )
    session.add(site)
    await session.flush()

    logger.info(f"Created site {site.id}: {site.site_name} for company {site.company_id}")
    log_admin_action(current_user, "create_site", "site", site.id, {"company_id": site.company_id})
    return await service.site_out(session, site)


@router.patch("/sites/{site_id}", response_model=AdminSiteOut)
async def update_site(
    site_id: int,
    data: SiteUpdate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    site = await _get_site_or_404(session, site_id)
    changes = data.model_dump(exclude_unset=True)

    new_name = changes.pop("site_name", None)
    if new_name:
        if await service.find_site_by_name(session, site.company_id, new_name, exclude_id=site_id):
            raise ConflictError(
                detail=f"A site named '{new_name}' already exists for this company"
            )
        site.site_name = new_name

    new_status = changes.pop("status", None)
    if new_status is not None:
        service.apply_site_status(site, new_status)

    for field, value in changes.items():
        # Explicit nulls only clear columns that may be empty
        if value is None and field not in ("location", "onboarding_notes", "inference_schedule", "retraining_frequency_days"):
            continue
        setattr(site, field, value)

    site.updated_at = _utcnow()
    await session.flush()

    logger.info(f"Updated site {site_id}")
    log_admin_action(current_user, "update_site", "site", site_id, data.model_dump(mode="json", exclude_unset=True))
    return await service.site_out(session, site)


@router.patch("/sites/{site_id}/status", response_model=AdminSiteOut)
async def update_site_status(
    site_id: int,
    data: SiteStatusUpdate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    site = await _get_site_or_404(session, site_id)

    previous = service.apply_site_status(site, data.status)
    if data.notes and data.notes.strip():
        site.onboarding_notes = data.notes
    site.updated_at = _utcnow()
    await session.flush()

    logger.info(f"Updated site {site_id} status from {previous.value} to {data.status.value}")
    log_admin_action(
        current_user, "update_site_status", "site", site_id,
        {"from": previous.value, "to": data.status.value},
    )
    return await service.site_out(session, site)


@router.delete("/sites/{site_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_site(
    site_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    site = await _get_site_or_404(session, site_id)

    data_rows = await service.count_site_data_rows(session, site_id)
    if data_rows > 0:
        logger.warning(f"Deleting site {site_id} with {data_rows} data rows")

    await session.delete(site)
    await session.flush()

    logger.info(f"Deleted site {site_id}: {site.site_name}")
    log_admin_action(current_user, "delete_site", "site", site_id, {"data_rows": data_rows})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---- Users ----

@router.get("/users", response_model=list[AdminUserOut])
async def list_users(
    company_id: Optional[int] = Query(None, alias="companyId"),
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    return await service.list_users(session, company_id)


@router.get("/users/{user_id}", response_model=AdminUserOut)
async def get_user(
    user_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    user = await _get_user_or_404(session, user_id)
    return await service.user_out(session, user)


@router.post("/users", response_model=AdminUserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    _check_role_assignment(current_user, data.role)

    if await service.find_user_by_email(session, data.email):
        raise ConflictError(detail=f"A user with email '{data.email}' already exists")

    if data.company_id is not None and await session.get(Company, data.company_id) is None:
        raise BadRequestError(detail=f"Company with ID {data.company_id} not found")

    now = _utcnow()
    user = User(
        email=data.email.lower(),
        name=data.name,
        company_id=data.company_id,
        role=data.role,
        is_individual=data.is_individual or data.company_id is None,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    await session.flush()

    logger.info(f"Created user {user.id}: {user.email} (company {user.company_id})")
    log_admin_action(current_user, "create_user", "user", user.id, {"role": user.role.value})
    return await service.user_out(session, user)


@router.patch("/users/{user_id}", response_model=AdminUserOut)
async def update_user(
    user_id: int,
    data: UserUpdate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    user = await _get_user_or_404(session, user_id)

    if data.role is not None:
        _check_role_assignment(current_user, data.role)
        if user.role == UserRole.SUPER_USER and current_user.role != UserRole.SUPER_USER:
            raise ForbiddenError(detail="Only a SuperUser can change a SuperUser's role")

    if data.name is not None:
        user.name = data.name
    if data.role is not None:
        user.role = data.role
    if data.is_individual is not None:
        user.is_individual = data.is_individual

    if data.company_id is not None:
        if data.company_id == 0:
            user.company_id = None
            user.is_individual = True
        else:
            if await session.get(Company, data.company_id) is None:
                raise BadRequestError(detail=f"Company with ID {data.company_id} not found")
            user.company_id = data.company_id

    user.updated_at = _utcnow()
    await session.flush()

    logger.info(f"Updated user {user_id}")
    log_admin_action(current_user, "update_user", "user", user_id, data.model_dump(mode="json", exclude_unset=True))
    return await service.user_out(session, user)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    user = await _get_user_or_404(session, user_id)
    if user.id == current_user.id:
        raise BadRequestError(detail="Cannot delete your own account")

    email = user.email
    await service.delete_user(session, user)

    logger.info(f"Deleted user {user_id}: {email}")
    log_admin_action(current_user, "delete_user", "user", user_id, {"email": email})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users/{user_id}/sites", response_model=list[SiteAccessOut])
async def list_user_sites(
    user_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    await _get_user_or_404(session, user_id)
    return await service.list_access(session, user_id=user_id)


# ---- Site access ----

@router.get("/sites/{site_id}/access", response_model=list[SiteAccessOut])
async def list_site_access(
    site_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    await _get_site_or_404(session, site_id)
    return await service.list_access(session, site_id=site_id)


@router.post("/sites/{site_id}/access", response_model=SiteAccessOut)
async def grant_site_access(
    site_id: int,
    data: SiteAccessGrant,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    """Grant a site role, or change the role of an existing grant."""
    site = await _get_site_or_404(session, site_id)
    user = await _get_user_or_404(session, data.user_id)

    access = await service.get_access(session, user.id, site_id)
    if access is not None:
        access.role_on_site = data.role
        logger.info(f"Updated site access: user {user.id} -> site {site_id} with role {data.role.value}")
    else:
        session.add(UserSiteAccess(user_id=user.id, site_id=site_id, role_on_site=data.role))
        logger.info(f"Granted site access: user {user.id} -> site {site_id} with role {data.role.value}")
    await session.flush()

    log_admin_action(
        current_user, "grant_site_access", "site", site_id,
        {"user_id": user.id, "role": data.role.value},
    )
    return SiteAccessOut(
        user_id=user.id,
        user_email=user.email,
        user_name=user.name,
        site_id=site_id,
        site_name=site.site_name,
        role=data.role,
    )


@router.delete("/sites/{site_id}/access/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_site_access(
    site_id: int,
    user_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    access = await service.get_access(session, user_id, site_id)
    if access is None:
        raise NotFoundError(detail=f"User {user_id} does not have access to site {site_id}")

    await session.delete(access)
    await session.flush()

    logger.info(f"Revoked site access: user {user_id} from site {site_id}")
    log_admin_action(current_user, "revoke_site_access", "site", site_id, {"user_id": user_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---- Schema versions ----

@router.get("/sites/{site_id}/schemas", response_model=list[SchemaVersionOut])
async def list_site_schemas(
    site_id: int,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    site = await _get_site_or_404(session, site_id)
    return await service.list_schema_versions(session, site)


@router.post(
    "/sites/{site_id}/schemas",
    response_model=SchemaVersionOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_site_schema(
    site_id: int,
    data: SchemaVersionCreate,
    current_user: User = Depends(require_admin),
    session: AsyncSession = Depends(get_pg_session),
):
    """Add a schema version and make it the site's current schema."""
    site = await _get_site_or_404(session, site_id)

    normalised = service.normalise_schema_definition(data.schema_definition)
    if normalised is None:
        raise BadRequestError(detail="Schema definition must be a JSON object of column definitions")
    definition_text, columns = normalised

    latest = await service.latest_schema_version_number(session, site_id)
    version_number = service.next_schema_version_number(latest, data.version_number)
    if version_number is None:
        raise BadRequestError(
            detail=f"Version number must be greater than the current latest version {latest}"
        )

    schema = await service.create_schema_version(
        session,
        site,
        definition_text,
        version_number,
        data.change_description,
        current_user.id,
        data.effective_from,
    )
    log_admin_action(
        current_user, "create_schema_version", "site", site_id,
        {"schema_id": schema.id, "version": version_number, "columns": sorted(columns)},
    )
    return service.schema_version_out(schema, site.current_schema_version_id)
