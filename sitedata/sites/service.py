"""
Site read models: pure async functions, no FastAPI imports.

Called by router.py with an injected AsyncSession after the caller's
site access has been checked.
"""
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.access.service import SiteAuthorizationService
from sitedata.db.enums import SiteRole
from sitedata.db.models import (
    Company,
    ModelVersion,
    Site,
    SiteDataSchema,
    Upload,
    User,
    UserSiteAccess,
)
from sitedata.inference.trigger import InferenceTrigger
from sitedata.sites.schemas import (
    ActiveModelOut,
    ModelVersionOut,
    SchemaInfoOut,
    SiteDetailOut,
    SiteListOut,
    SiteUserOut,
    UploadSummaryOut,
)


async def site_exists(session: AsyncSession, site_id: int) -> bool:
    result = await session.execute(select(Site.id).where(Site.id == site_id))
    return result.scalar_one_or_none() is not None


async def list_sites_for_user(session: AsyncSession, user_id: int) -> list[SiteListOut]:
    site_ids = await SiteAuthorizationService(session).get_user_accessible_site_ids(user_id)
    if not site_ids:
        return []

    result = await session.execute(
        select(Site, Company.name)
        .join(Company, Company.id == Site.company_id)
        .where(Site.id.in_(sorted(site_ids)))
        .order_by(Site.site_name, Site.id)
    )
    rows = result.all()

    last_uploads = dict(
        (await session.execute(
            select(Upload.site_id, func.max(Upload.uploaded_at))
            .where(Upload.site_id.in_(sorted(site_ids)))
            .group_by(Upload.site_id)
        )).all()
    )
    roles = dict(
        (await session.execute(
            select(UserSiteAccess.site_id, UserSiteAccess.role_on_site)
            .where(UserSiteAccess.user_id == user_id)
        )).all()
    )

    return [
        SiteListOut(
            id=site.id,
            site_name=site.site_name,
            company_name=company_name,
            location=site.location,
            status=site.status,
            user_role=roles.get(site.id),
            last_data_upload=last_uploads.get(site.id),
            auto_inference_enabled=site.auto_inference_enabled,
            auto_retraining_enabled=site.auto_retraining_enabled,
        )
        for site, company_name in rows
    ]


async def get_site_detail(
    session: AsyncSession,
    site_id: int,
    user_role: Optional[SiteRole],
) -> Optional[SiteDetailOut]:
    result = await session.execute(
        select(Site, Company.name)
        .join(Company, Company.id == Site.company_id)
        .where(Site.id == site_id)
    )
    row = result.one_or_none()
    if row is None:
        return None
    site, company_name = row

    active_model = await InferenceTrigger(session).get_active_model(site_id)

    current_schema = None
    if site.current_schema_version_id is not None:
        current_schema = (await session.execute(
            select(SiteDataSchema).where(SiteDataSchema.id == site.current_schema_version_id)
        )).scalar_one_or_none()

    total_uploads, last_upload_at, total_rows_inserted = (await session.execute(
        select(
            func.count(Upload.id),
            func.max(Upload.uploaded_at),
            func.sum(Upload.rows_inserted),
        ).where(Upload.site_id == site_id)
    )).one()

    return SiteDetailOut(
        id=site.id,
        site_name=site.site_name,
        company_id=site.company_id,
        company_name=company_name,
        location=site.location,
        timezone=site.timezone,
        user_role=user_role,
        status=site.status,
        onboarding_notes=site.onboarding_notes,
        activated_at=site.activated_at,
        auto_inference_enabled=site.auto_inference_enabled,
        inference_schedule=site.inference_schedule,
        auto_retraining_enabled=site.auto_retraining_enabled,
        retraining_frequency_days=site.retraining_frequency_days,
        train_on_every_upload=site.train_on_every_upload,
        active_model=ActiveModelOut.model_validate(active_model) if active_model else None,
        current_schema=SchemaInfoOut.model_validate(current_schema) if current_schema else None,
        total_uploads=total_uploads or 0,
        last_upload_at=last_upload_at,
        total_rows_inserted=total_rows_inserted or 0,
        created_at=site.created_at,
        updated_at=site.updated_at,
    )


async def list_uploads(session: AsyncSession, site_id: int, limit: int) -> list[UploadSummaryOut]:
    result = await session.execute(
        select(Upload, User.name)
        .outerjoin(User, User.id == Upload.user_id)
        .where(Upload.site_id == site_id)
        .order_by(Upload.uploaded_at.desc(), Upload.id.desc())
        .limit(limit)
    )
    return [
        UploadSummaryOut(
            id=upload.id,
            file_name=upload.file_name,
            uploaded_at=upload.uploaded_at,
            uploaded_by_user_id=upload.user_id,
            uploaded_by_user_name=user_name,
            validation_status=upload.validation_status,
            rows_parsed=upload.rows_parsed,
            rows_inserted=upload.rows_inserted,
            error_message=upload.error_message,
        )
        for upload, user_name in result.all()
    ]


async def list_models(session: AsyncSession, site_id: int, limit: int) -> list[ModelVersionOut]:
    result = await session.execute(
        select(ModelVersion)
        .where(ModelVersion.site_id == site_id)
        .order_by(ModelVersion.version_number.desc())
        .limit(limit)
    )
    return [ModelVersionOut.model_validate(m) for m in result.scalars().all()]


async def list_site_users(session: AsyncSession, site_id: int) -> list[SiteUserOut]:
    result = await session.execute(
        select(UserSiteAccess.role_on_site, User, Company.name)
        .join(User, User.id == UserSiteAccess.user_id)
        .outerjoin(Company, Company.id == User.company_id)
        .where(UserSiteAccess.site_id == site_id)
        .order_by(User.email)
    )
    return [
        SiteUserOut(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role_on_site=role,
            company_name=company_name,
        )
        for role, user, company_name in result.all()
    ]
