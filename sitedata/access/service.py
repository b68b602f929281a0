"""Site-scoped authorization.

Global ``Admin`` and ``SuperUser`` roles see every site. Everyone else needs an
explicit ``UserSiteAccess`` grant, whose ``role_on_site`` decides what they may
do there. ``get_user_site_role`` only ever reports the explicit grant, so an
Admin without a grant has access but no site role.
"""

from typing import Collection, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.db.enums import SiteRole, UserRole
from sitedata.db.models import Site, User, UserSiteAccess


class SiteAuthorizationService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _global_role(self, user_id: int) -> Optional[UserRole]:
        result = await self.session.execute(select(User.role).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def _bypasses_grants(self, user_id: int) -> bool:
        role = await self._global_role(user_id)
        return role is not None and role.bypasses_site_grants

    async def has_site_access(self, user_id: int, site_id: int) -> bool:
        if await self._bypasses_grants(user_id):
            return True
        return await self.get_user_site_role(user_id, site_id) is not None

    async def get_user_site_role(self, user_id: int, site_id: int) -> Optional[SiteRole]:
        result = await self.session.execute(
            select(UserSiteAccess.role_on_site).where(
                UserSiteAccess.user_id == user_id,
                UserSiteAccess.site_id == site_id,
            )
        )
        return result.scalar_one_or_none()

    async def has_site_role(
        self,
        user_id: int,
        site_id: int,
        allowed_roles: Collection[SiteRole],
    ) -> bool:
        """True for Admin/SuperUser whatever ``allowed_roles`` holds, else exact membership."""
        if await self._bypasses_grants(user_id):
            return True
        role = await self.get_user_site_role(user_id, site_id)
        if role is None:
            return False
        return role in allowed_roles

    async def get_user_accessible_site_ids(self, user_id: int) -> set[int]:
        if await self._bypasses_grants(user_id):
            result = await self.session.execute(select(Site.id))
        else:
            result = await self.session.execute(
                select(UserSiteAccess.site_id).where(UserSiteAccess.user_id == user_id)
            )
        return set(result.scalars().all())
