from datetime import datetime
from typing import Optional

from sitedata.common.base_model import ApiModel
from sitedata.db.enums import UserRole


class CurrentUserOut(ApiModel):
    id: int
    email: str
    name: Optional[str] = None
    role: UserRole
    company_id: Optional[int] = None
    company_name: Optional[str] = None
    is_individual: bool
    created_at: datetime
    last_login: Optional[datetime] = None


class ServiceHealthOut(ApiModel):
    status: str
    service: str
    timestamp: datetime
