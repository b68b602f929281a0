import logging
from typing import Optional

from sitedata.db.models import User

audit_logger = logging.getLogger("sitedata.audit")


def log_admin_action(
    user: User,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[int] = None,
    details: Optional[dict] = None,
) -> None:
    """Write an administrative change to the audit log.

    Only the structured ``sitedata.audit`` logger is used; there is no audit table.
    """
    audit_logger.warning(
        "ADMIN_ACTION | user=%s | role=%s | action=%s | resource=%s:%s | details=%s",
        user.email, user.role.value, action,
        resource_type, resource_id, details,
    )
