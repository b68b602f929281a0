"""
SQLAlchemy ORM models for all PostgreSQL tables.

Tables are grouped by logical area into the ``core``, ``config``, ``data``
and ``ml`` schemas. Enumerated columns store their string names.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    BigInteger,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from sitedata.db.enums import (
    CleaningRuleType,
    InferenceRequestStatus,
    PredictionStatus,
    SiteRole,
    SiteStatus,
    TrainingJobStatus,
    UploadValidationStatus,
    UserRole,
    ValidationRuleType,
)
from sitedata.db.postgres import Base

# JSONB on PostgreSQL, plain JSON (TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls):
    """String-backed enum column type storing the member value ("SuperUser", "Pending", ...)."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=50,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================================
# COMPANIES
# ============================================================
class Company(Base):
    __tablename__ = "companies"
    __table_args__ = {"schema": "core"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ============================================================
# USERS
# ============================================================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(
        Integer,
        ForeignKey("core.companies.id", ondelete="CASCADE"),
        nullable=True,  # None for individual users
        index=True,
    )
    idp_sub = Column(String(255), nullable=True)
    idp_issuer = Column(String(500), nullable=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(_enum(UserRole), nullable=False, default=UserRole.USER)
    is_individual = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    last_login = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("idp_sub", "idp_issuer", name="uq_users_idp_identity"),
        {"schema": "core"},
    )


# ============================================================
# SITES
# ============================================================
class Site(Base):
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(
        Integer,
        ForeignKey("core.companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    site_name = Column(String(255), nullable=False)
    location = Column(Text, nullable=True)
    timezone = Column(String(100), nullable=False, default="UTC")

    # Onboarding lifecycle
    status = Column(_enum(SiteStatus), nullable=False, default=SiteStatus.PENDING_SETUP)
    onboarding_notes = Column(Text, nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)

    current_schema_version_id = Column(
        Integer,
        ForeignKey(
            "config.site_data_schemas.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_sites_current_schema",
        ),
        nullable=True,
        index=True,
    )
    config_json = Column(_JsonType, nullable=False, default=dict)

    # Automation settings (consumed by an external scheduler)
    auto_inference_enabled = Column(Boolean, nullable=False, default=False)
    inference_schedule = Column(Time, nullable=True)
    auto_retraining_enabled = Column(Boolean, nullable=False, default=False)
    retraining_frequency_days = Column(Integer, nullable=True)
    train_on_every_upload = Column(Boolean, nullable=False, default=False)

    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = ({"schema": "core"},)


# ============================================================
# USER SITE ACCESS (M:N join)
# ============================================================
class UserSiteAccess(Base):
    __tablename__ = "user_site_access"
    __table_args__ = {"schema": "core"}

    user_id = Column(
        Integer,
        ForeignKey("core.users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    role_on_site = Column(_enum(SiteRole), nullable=False)


# ============================================================
# SITE DATA SCHEMAS (immutable versions)
# ============================================================
class SiteDataSchema(Base):
    __tablename__ = "site_data_schemas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_number = Column(Float, nullable=False)
    # Raw JSON text; kept as text so a malformed definition can be stored and detected.
    schema_definition = Column(Text, nullable=False)
    effective_from = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    change_description = Column(Text, nullable=True)
    created_by_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_site_data_schemas_site_version", "site_id", "version_number"),
        {"schema": "config"},
    )


# ============================================================
# DASHBOARDS
# ============================================================
class Dashboard(Base):
    __tablename__ = "dashboards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    plotly_config_json = Column(_JsonType, nullable=False, default=dict)
    is_public = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_dashboards_site_public", "site_id", "is_public"),
        {"schema": "config"},
    )


# ============================================================
# DATA CLEANING / VALIDATION RULES
# ============================================================
class DataCleaningRule(Base):
    __tablename__ = "data_cleaning_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_type = Column(_enum(CleaningRuleType), nullable=False)
    config_json = Column(_JsonType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    created_by_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    version_number = Column(Float, nullable=False, default=1.0)

    __table_args__ = (
        Index("idx_data_cleaning_rules_site", "site_id", "is_active", "priority"),
        {"schema": "config"},
    )


class DataValidationRule(Base):
    __tablename__ = "data_validation_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    column_name = Column(String(255), nullable=False)
    rule_type = Column(_enum(ValidationRuleType), nullable=False)
    config_json = Column(_JsonType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    created_by_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_data_validation_rules_site", "site_id", "is_active", "priority"),
        {"schema": "config"},
    )


# ============================================================
# DATA ROWS (one per site per calendar day)
# ============================================================
class DataRow(Base):
    __tablename__ = "data_rows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    schema_version_id = Column(
        Integer,
        ForeignKey("config.site_data_schemas.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    date = Column(Date, nullable=False)
    sensor_data = Column(_JsonType, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("site_id", "date", name="uq_data_rows_site_date"),
        {"schema": "data"},
    )


# ============================================================
# UPLOADS (audit of ingestion attempts)
# ============================================================
class Upload(Base):
    __tablename__ = "uploads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    uploaded_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    file_name = Column(String(500), nullable=False)
    rows_parsed = Column(Integer, nullable=False, default=0)
    rows_inserted = Column(Integer, nullable=False, default=0)
    validation_status = Column(
        _enum(UploadValidationStatus),
        nullable=False,
        default=UploadValidationStatus.PENDING,
    )
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_uploads_site_uploaded", "site_id", uploaded_at.desc()),
        {"schema": "data"},
    )


# ============================================================
# ML MODEL VERSIONS
# ============================================================
class ModelVersion(Base):
    __tablename__ = "model_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    blob_storage_path = Column(Text, nullable=False)
    model_format = Column(String(100), nullable=True)
    model_framework = Column(String(100), nullable=True)
    trained_at = Column(DateTime(timezone=True), nullable=True)
    training_data_start = Column(DateTime(timezone=True), nullable=True)
    training_data_end = Column(DateTime(timezone=True), nullable=True)
    metrics_json = Column(_JsonType, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    version_number = Column(Float, nullable=False)

    __table_args__ = (
        Index("idx_model_versions_site_active", "site_id", "is_active"),
        Index("idx_model_versions_site_version", "site_id", "version_number"),
        {"schema": "ml"},
    )


# ============================================================
# PREDICTION RESULTS
# ============================================================
class PredictionResult(Base):
    __tablename__ = "prediction_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    model_version_id = Column(
        Integer, ForeignKey("ml.model_versions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    scenario_name = Column(String(255), nullable=True)
    input_data_json = Column(_JsonType, nullable=True)
    prediction_output_json = Column(_JsonType, nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    duration_ms = Column(BigInteger, nullable=False, default=0)
    status = Column(_enum(PredictionStatus), nullable=False)

    __table_args__ = (
        Index("idx_prediction_results_site_created", "site_id", "created_at"),
        {"schema": "ml"},
    )


# ============================================================
# INFERENCE REQUESTS
# ============================================================
class InferenceRequest(Base):
    __tablename__ = "inference_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    requested_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    status = Column(
        _enum(InferenceRequestStatus),
        nullable=False,
        default=InferenceRequestStatus.PENDING,
    )
    input_payload = Column(_JsonType, nullable=False, default=dict)
    prediction_result_id = Column(
        Integer, ForeignKey("ml.prediction_results.id", ondelete="SET NULL"), nullable=True
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(BigInteger, nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_inference_requests_site_requested", "site_id", "requested_at"),
        Index("idx_inference_requests_status_requested", "status", "requested_at"),
        {"schema": "ml"},
    )


# ============================================================
# TRAINING JOBS
# ============================================================
class TrainingJob(Base):
    __tablename__ = "training_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(
        Integer,
        ForeignKey("core.sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(_enum(TrainingJobStatus), nullable=False, default=TrainingJobStatus.SCHEDULED)
    training_data_start = Column(DateTime(timezone=True), nullable=False)
    training_data_end = Column(DateTime(timezone=True), nullable=False)
    model_version_id = Column(
        Integer, ForeignKey("ml.model_versions.id", ondelete="SET NULL"), nullable=True
    )
    config_json = Column(_JsonType, nullable=False, default=dict)
    logs_json = Column(_JsonType, nullable=True)
    error_message = Column(Text, nullable=True)
    triggered_by_id = Column(
        Integer, ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        Index("idx_training_jobs_site_scheduled", "site_id", "scheduled_at"),
        Index("idx_training_jobs_status_scheduled", "status", "scheduled_at"),
        {"schema": "ml"},
    )
