from datetime import datetime, time
from typing import Any, Optional, Union

from pydantic import EmailStr, Field, field_validator

from sitedata.common.base_model import ApiModel
from sitedata.db.enums import SiteRole, SiteStatus, UserRole


def _strip_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if len(v) < 2:
        raise ValueError("must be at least 2 characters")
    return v


# ============================================================
# COMPANIES
# ============================================================
class CompanyCreate(ApiModel):
    name: str = Field(..., max_length=200)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_name(v)


class CompanyUpdate(ApiModel):
    name: Optional[str] = Field(None, max_length=200)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_name(v)


class CompanyOut(ApiModel):
    id: int
    name: str
    created_at: datetime
    site_count: int = 0
    user_count: int = 0


# ============================================================
# SITES
# ============================================================
class SiteCreate(ApiModel):
    company_id: int
    site_name: str = Field(..., max_length=200)
    location: Optional[str] = None
    timezone: Optional[str] = Field(None, max_length=100)
    config_json: Optional[dict[str, Any]] = None
    onboarding_notes: Optional[str] = None
    auto_inference_enabled: bool = False
    inference_schedule: Optional[time] = None
    auto_retraining_enabled: bool = False
    retraining_frequency_days: Optional[int] = Field(None, ge=1)
    train_on_every_upload: bool = False

    @field_validator("site_name")
    @classmethod
    def validate_site_name(cls, v: str) -> str:
        return _strip_name(v)


class SiteUpdate(ApiModel):
    site_name: Optional[str] = Field(None, max_length=200)
    location: Optional[str] = None
    timezone: Optional[str] = Field(None, max_length=100)
    config_json: Optional[dict[str, Any]] = None
    onboarding_notes: Optional[str] = None
    status: Optional[SiteStatus] = None
    auto_inference_enabled: Optional[bool] = None
    inference_schedule: Optional[time] = None
    auto_retraining_enabled: Optional[bool] = None
    retraining_frequency_days: Optional[int] = Field(None, ge=1)
    train_on_every_upload: Optional[bool] = None

    @field_validator("site_name")
    @classmethod
    def validate_site_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_name(v)


class SiteStatusUpdate(ApiModel):
    status: SiteStatus
    notes: Optional[str] = None


class AdminSiteOut(ApiModel):
    id: int
    company_id: int
    company_name: str
    site_name: str
    location: Optional[str] = None
    timezone: Optional[str] = None
    status: SiteStatus
    onboarding_notes: Optional[str] = None
    activated_at: Optional[datetime] = None
    current_schema_version_id: Optional[int] = None
    auto_inference_enabled: bool
    auto_retraining_enabled: bool
    user_count: int = 0
    created_at: datetime
    updated_at: datetime


# ============================================================
# USERS
# ============================================================
class UserCreate(ApiModel):
    email: EmailStr
    name: Optional[str] = None
    company_id: Optional[int] = None
    role: UserRole = UserRole.USER
    is_individual: bool = False


class UserUpdate(ApiModel):
    name: Optional[str] = None
    # 0 detaches the user from its company
    company_id: Optional[int] = Field(None, ge=0)
    role: Optional[UserRole] = None
    is_individual: Optional[bool] = None


class AdminUserOut(ApiModel):
    id: int
    email: str
    name: Optional[str] = None
    company_id: Optional[int] = None
    company_name: Optional[str] = None
    role: UserRole
    is_individual: bool
    is_linked_to_idp: bool
    site_access_count: int = 0
    created_at: datetime
    last_login: Optional[datetime] = None


# ============================================================
# SITE ACCESS
# ============================================================
class SiteAccessGrant(ApiModel):
    user_id: int
    role: SiteRole


class SiteAccessOut(ApiModel):
    user_id: int
    user_email: str
    user_name: Optional[str] = None
    site_id: int
    site_name: str
    role: SiteRole


# ============================================================
# SCHEMA VERSIONS
# ============================================================
class SchemaVersionCreate(ApiModel):
    # Column map as a JSON object, or the same map already serialised to text
    schema_definition: Union[dict[str, Any], str]
    version_number: Optional[float] = Field(None, gt=0)
    change_description: Optional[str] = None
    effective_from: Optional[datetime] = None


class SchemaVersionOut(ApiModel):
    id: int
    site_id: int
    version_number: float
    schema_definition: str
    effective_from: datetime
    change_description: Optional[str] = None
    created_by_id: Optional[int] = None
    created_at: datetime
    is_current: bool = False
