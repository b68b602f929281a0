from datetime import datetime, time
from typing import Any, Optional

from sitedata.common.base_model import ApiModel
from sitedata.db.enums import SiteRole, SiteStatus, UploadValidationStatus


class SiteListOut(ApiModel):
    id: int
    site_name: str
    company_name: str
    location: Optional[str] = None
    status: SiteStatus
    # None when access comes from a global role rather than an explicit grant
    user_role: Optional[SiteRole] = None
    last_data_upload: Optional[datetime] = None
    auto_inference_enabled: bool
    auto_retraining_enabled: bool


class ActiveModelOut(ApiModel):
    id: int
    version_number: float
    trained_at: Optional[datetime] = None
    training_data_start: Optional[datetime] = None
    training_data_end: Optional[datetime] = None
    metrics_json: Optional[Any] = None


class SchemaInfoOut(ApiModel):
    id: int
    version_number: float
    schema_definition: str
    effective_from: datetime


class SiteDetailOut(ApiModel):
    id: int
    site_name: str
    company_id: int
    company_name: str
    location: Optional[str] = None
    timezone: Optional[str] = None
    user_role: Optional[SiteRole] = None

    status: SiteStatus
    onboarding_notes: Optional[str] = None
    activated_at: Optional[datetime] = None

    auto_inference_enabled: bool
    inference_schedule: Optional[time] = None
    auto_retraining_enabled: bool
    retraining_frequency_days: Optional[int] = None
    train_on_every_upload: bool

    active_model: Optional[ActiveModelOut] = None
    current_schema: Optional[SchemaInfoOut] = None

    total_uploads: int = 0
    last_upload_at: Optional[datetime] = None
    total_rows_inserted: int = 0

    created_at: datetime
    updated_at: datetime


class UploadSummaryOut(ApiModel):
    id: int
    file_name: str
    uploaded_at: datetime
    uploaded_by_user_id: Optional[int] = None
    uploaded_by_user_name: Optional[str] = None
    validation_status: UploadValidationStatus
    rows_parsed: int
    rows_inserted: int
    error_message: Optional[str] = None


class ModelVersionOut(ApiModel):
    id: int
    version_number: float
    trained_at: Optional[datetime] = None
    training_data_start: Optional[datetime] = None
    training_data_end: Optional[datetime] = None
    metrics_json: Optional[Any] = None
    is_active: bool
    blob_storage_path: str


class SiteUserOut(ApiModel):
    user_id: int
    email: str
    name: Optional[str] = None
    role_on_site: SiteRole
    company_name: Optional[str] = None
