import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.db.enums import UserRole
from sitedata.db.models import Company, User

logger = logging.getLogger(__name__)


class UserService:
    """Maps identity-provider subjects onto local user records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_identity(self, idp_sub: str, idp_issuer: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.idp_sub == idp_sub, User.idp_issuer == idp_issuer)
        )
        return result.scalar_one_or_none()

    async def get_company_name(self, user: User) -> Optional[str]:
        if user.company_id is None:
            return None
        result = await self.session.execute(
            select(Company.name).where(Company.id == user.company_id)
        )
        return result.scalar_one_or_none()

    async def get_unlinked_user_by_email(self, email: str) -> Optional[User]:
        """Find a pre-provisioned user (no IdP subject yet) by case-insensitive email."""
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.lower(), User.idp_sub.is_(None))
        )
        return result.scalar_one_or_none()

    async def _email_taken_by_other(self, email: str, user_id: int) -> bool:
        result = await self.session.execute(
            select(User.id).where(func.lower(User.email) == email.lower(), User.id != user_id)
        )
        return result.first() is not None

    async def get_or_create_user_from_identity(
        self,
        idp_sub: str,
        idp_issuer: str,
        email: str,
        name: Optional[str],
    ) -> User:
        """Return the user for (sub, issuer), creating it on first sight.

        A user created by an admin ahead of their first login (no IdP subject
        yet) is linked to the identity by email instead of duplicated.
        Email and name are refreshed from the claims when they changed
        (stamping ``updated_at``), except that an email already held by
        another user is left alone. ``last_login`` is stamped on every call.
        New users are individuals with the ``User`` role.
        """
        now = datetime.now(timezone.utc)
        user = await self.get_user_by_identity(idp_sub, idp_issuer)

        if user is None:
            user = await self.get_unlinked_user_by_email(email)
            if user is not None:
                user.idp_sub = idp_sub
                user.idp_issuer = idp_issuer
                logger.info(
                    f"Linked pre-provisioned user {user.id} to IDP identity "
                    f"(sub={idp_sub}, issuer={idp_issuer})"
                )

        if user is None:
            user = User(
                idp_sub=idp_sub,
                idp_issuer=idp_issuer,
                email=email,
                name=name,
                role=UserRole.USER,
                is_individual=True,
                created_at=now,
                updated_at=now,
                last_login=now,
            )
            try:
                async with self.session.begin_nested():
                    self.session.add(user)
            except IntegrityError:
                # A concurrent first login for the same identity won the insert.
                user = await self.get_user_by_identity(idp_sub, idp_issuer)
                if user is None:
                    raise
            else:
                logger.info(
                    f"Created new user from IDP: {email} (sub={idp_sub}, issuer={idp_issuer})"
                )
                return user

        if user.email != email:
            if await self._email_taken_by_other(email, user.id):
                logger.warning(
                    f"Not updating email of user {user.id} to {email}: held by another user"
                )
            else:
                user.email = email
                user.updated_at = now
        if user.name != name:
            user.name = name
            user.updated_at = now
        user.last_login = now
        await self.session.flush()
        return user
