"""
Administration service: pure async functions, no FastAPI imports.

Called by router.py with an injected AsyncSession. Lookups return None for
absent rows; the router decides which HTTP error that becomes.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.admin.schemas import (
    AdminSiteOut,
    AdminUserOut,
    CompanyOut,
    SchemaVersionOut,
    SiteAccessOut,
)
from sitedata.db.enums import SiteStatus
from sitedata.db.models import (
    Company,
    DataRow,
    Site,
    SiteDataSchema,
    User,
    UserSiteAccess,
)
from sitedata.ingestion.schemas import SchemaColumn
from sitedata.ingestion.validator import parse_schema_definition

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _count(session: AsyncSession, column, *criteria) -> int:
    result = await session.execute(select(func.count(column)).where(*criteria))
    return result.scalar_one()


# ---- Companies ----

async def find_company_by_name(
    session: AsyncSession, name: str, exclude_id: Optional[int] = None
) -> Optional[Company]:
    """Case-insensitive name lookup."""
    stmt = select(Company).where(func.lower(Company.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Company.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def company_out(session: AsyncSession, company: Company) -> CompanyOut:
    return CompanyOut(
        id=company.id,
        name=company.name,
        created_at=company.created_at,
        site_count=await _count(session, Site.id, Site.company_id == company.id),
        user_count=await _count(session, User.id, User.company_id == company.id),
    )


async def list_companies(session: AsyncSession) -> list[CompanyOut]:
    site_counts = (
        select(Site.company_id, func.count(Site.id).label("n"))
        .group_by(Site.company_id)
        .subquery()
    )
    user_counts = (
        select(User.company_id, func.count(User.id).label("n"))
        .group_by(User.company_id)
        .subquery()
    )
    result = await session.execute(
        select(
            Company,
            func.coalesce(site_counts.c.n, 0),
            func.coalesce(user_counts.c.n, 0),
        )
        .outerjoin(site_counts, site_counts.c.company_id == Company.id)
        .outerjoin(user_counts, user_counts.c.company_id == Company.id)
        .order_by(Company.name)
    )
    return [
        CompanyOut(
            id=company.id,
            name=company.name,
            created_at=company.created_at,
            site_count=sites,
            user_count=users,
        )
        for company, sites, users in result.all()
    ]


async def company_has_dependents(session: AsyncSession, company_id: int) -> Optional[str]:
    """Return why the company cannot be deleted, or None if it can."""
    if await _count(session, Site.id, Site.company_id == company_id):
        return "Cannot delete company with existing sites. Remove sites first."
    if await _count(session, User.id, User.company_id == company_id):
        return "Cannot delete company with existing users. Reassign or remove users first."
    return None


# ---- Sites ----

def apply_site_status(site: Site, status: SiteStatus, now: Optional[datetime] = None) -> SiteStatus:
    """Move a site to ``status`` and return the previous one.

    Entering Active from any other status stamps ``activated_at``; staying
    Active keeps the original stamp.
    """
    previous = site.status
    site.status = status
    if status == SiteStatus.ACTIVE and previous != SiteStatus.ACTIVE:
        site.activated_at = now or _utcnow()
    return previous


async def find_site_by_name(
    session: AsyncSession, company_id: int, site_name: str, exclude_id: Optional[int] = None
) -> Optional[Site]:
    stmt = select(Site).where(
        Site.company_id == company_id,
        func.lower(Site.site_name) == site_name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(Site.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def site_out(session: AsyncSession, site: Site) -> AdminSiteOut:
    company_name = (
        await session.execute(select(Company.name).where(Company.id == site.company_id))
    ).scalar_one()
    return AdminSiteOut(
        id=site.id,
        company_id=site.company_id,
        company_name=company_name,
        site_name=site.site_name,
        location=site.location,
        timezone=site.timezone,
        status=site.status,
        onboarding_notes=site.onboarding_notes,
        activated_at=site.activated_at,
        current_schema_version_id=site.current_schema_version_id,
        auto_inference_enabled=site.auto_inference_enabled,
        auto_retraining_enabled=site.auto_retraining_enabled,
        user_count=await _count(session, UserSiteAccess.site_id, UserSiteAccess.site_id == site.id),
        created_at=site.created_at,
        updated_at=site.updated_at,
    )


async def list_sites(session: AsyncSession, company_id: Optional[int] = None) -> list[AdminSiteOut]:
    stmt = (
        select(Site)
        .join(Company, Company.id == Site.company_id)
        .order_by(Company.name, Site.site_name)
    )
    if company_id is not None:
        stmt = stmt.where(Site.company_id == company_id)
    result = await session.execute(stmt)
    return [await site_out(session, site) for site in result.scalars().all()]


async def count_site_data_rows(session: AsyncSession, site_id: int) -> int:
    return await _count(session, DataRow.id, DataRow.site_id == site_id)


# ---- Users ----

async def find_user_by_email(
    session: AsyncSession, email: str, exclude_id: Optional[int] = None
) -> Optional[User]:
    stmt = select(User).where(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def user_out(session: AsyncSession, user: User) -> AdminUserOut:
    company_name = None
    if user.company_id is not None:
        company_name = (
            await session.execute(select(Company.name).where(Company.id == user.company_id))
        ).scalar_one_or_none()
    return AdminUserOut(
        id=user.id,
        email=user.email,
        name=user.name,
        company_id=user.company_id,
        company_name=company_name,
        role=user.role,
        is_individual=user.is_individual,
        is_linked_to_idp=user.idp_sub is not None,
        site_access_count=await _count(
            session, UserSiteAccess.user_id, UserSiteAccess.user_id == user.id
        ),
        created_at=user.created_at,
        last_login=user.last_login,
    )


async def list_users(session: AsyncSession, company_id: Optional[int] = None) -> list[AdminUserOut]:
    stmt = select(User).order_by(User.email)
    if company_id is not None:
        stmt = stmt.where(User.company_id == company_id)
    result = await session.execute(stmt)
    return [await user_out(session, user) for user in result.scalars().all()]


async def delete_user(session: AsyncSession, user: User) -> None:
    await session.execute(delete(UserSiteAccess).where(UserSiteAccess.user_id == user.id))
    await session.delete(user)
    await session.flush()


# ---- Site access ----

async def get_access(session: AsyncSession, user_id: int, site_id: int) -> Optional[UserSiteAccess]:
    result = await session.execute(
        select(UserSiteAccess).where(
            UserSiteAccess.user_id == user_id,
            UserSiteAccess.site_id == site_id,
        )
    )
    return result.scalar_one_or_none()


async def list_access(
    session: AsyncSession,
    site_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> list[SiteAccessOut]:
    stmt = (
        select(UserSiteAccess, User.email, User.name, Site.site_name)
        .join(User, User.id == UserSiteAccess.user_id)
        .join(Site, Site.id == UserSiteAccess.site_id)
    )
    if site_id is not None:
        stmt = stmt.where(UserSiteAccess.site_id == site_id).order_by(User.email)
    if user_id is not None:
        stmt = stmt.where(UserSiteAccess.user_id == user_id).order_by(Site.site_name)
    result = await session.execute(stmt)
    return [
        SiteAccessOut(
            user_id=access.user_id,
            user_email=email,
            user_name=name,
            site_id=access.site_id,
            site_name=site_name,
            role=access.role_on_site,
        )
        for access, email, name, site_name in result.all()
    ]


# ---- Schema versions ----

def normalise_schema_definition(
    definition: Union[dict[str, Any], str],
) -> Optional[tuple[str, dict[str, SchemaColumn]]]:
    """Return the stored text and parsed columns, or None if it is not a column map."""
    text = definition if isinstance(definition, str) else json.dumps(definition)
    columns = parse_schema_definition(text)
    if columns is None:
        return None
    return text, columns


async def latest_schema_version_number(session: AsyncSession, site_id: int) -> Optional[float]:
    result = await session.execute(
        select(func.max(SiteDataSchema.version_number)).where(SiteDataSchema.site_id == site_id)
    )
    return result.scalar_one_or_none()


def next_schema_version_number(latest: Optional[float], requested: Optional[float]) -> Optional[float]:
    """Pick the number for a new schema version.

    Defaults to one above the latest. An explicit number is accepted only when
    it is greater than the latest; otherwise None is returned.
    """
    if requested is None:
        return 1.0 if latest is None else float(latest) + 1
    if latest is not None and requested <= latest:
        return None
    return requested


async def create_schema_version(
    session: AsyncSession,
    site: Site,
    schema_definition: str,
    version_number: float,
    change_description: Optional[str],
    created_by_id: Optional[int],
    effective_from: Optional[datetime] = None,
) -> SiteDataSchema:
    """Store a new immutable schema version and make it the site's current one."""
    now = _utcnow()
    schema = SiteDataSchema(
        site_id=site.id,
        version_number=version_number,
        schema_definition=schema_definition,
        effective_from=effective_from or now,
        change_description=change_description,
        created_by_id=created_by_id,
        created_at=now,
    )
    session.add(schema)
    await session.flush()

    site.current_schema_version_id = schema.id
    site.updated_at = now
    await session.flush()

    logger.info(
        f"Site {site.id} schema moved to version {version_number} (schema {schema.id})"
    )
    return schema


async def list_schema_versions(session: AsyncSession, site: Site) -> list[SchemaVersionOut]:
    result = await session.execute(
        select(SiteDataSchema)
        .where(SiteDataSchema.site_id == site.id)
        .order_by(SiteDataSchema.version_number.desc())
    )
    return [
        schema_version_out(schema, site.current_schema_version_id)
        for schema in result.scalars().all()
    ]


def schema_version_out(schema: SiteDataSchema, current_id: Optional[int]) -> SchemaVersionOut:
    out = SchemaVersionOut.model_validate(schema)
    out.is_current = schema.id == current_id
    return out
