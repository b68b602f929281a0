"""Initial schema - core, config, data and ml areas

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMAS = ("core", "config", "data", "ml")


def upgrade() -> None:
    for name in SCHEMAS:
        op.execute(f"CREATE SCHEMA IF NOT EXISTS {name}")

    # -- COMPANIES --
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        schema="core",
    )

    # -- USERS --
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("core.companies.id", ondelete="CASCADE"), nullable=True),
        sa.Column("idp_sub", sa.String(255), nullable=True),
        sa.Column("idp_issuer", sa.String(500), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(50), nullable=False, server_default="User"),
        sa.Column("is_individual", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("idp_sub", "idp_issuer", name="uq_users_idp_identity"),
        schema="core",
    )
    op.create_index("ix_core_users_company_id", "users", ["company_id"], schema="core")

    # -- SITES --
    op.create_table(
        "sites",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("core.companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("site_name", sa.String(255), nullable=False),
        sa.Column("location", sa.Text, nullable=True),
        sa.Column("timezone", sa.String(100), nullable=False, server_default="UTC"),
        sa.Column("status", sa.String(50), nullable=False, server_default="PendingSetup"),
        sa.Column("onboarding_notes", sa.Text, nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_schema_version_id", sa.Integer, nullable=True),
        sa.Column("config_json", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("auto_inference_enabled", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("inference_schedule", sa.Time, nullable=True),
        sa.Column("auto_retraining_enabled", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("retraining_frequency_days", sa.Integer, nullable=True),
        sa.Column("train_on_every_upload", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        schema="core",
    )
    op.create_index("ix_core_sites_company_id", "sites", ["company_id"], schema="core")
    op.create_index("ix_core_sites_current_schema_version_id", "sites", ["current_schema_version_id"], schema="core")

    # -- USER SITE ACCESS --
    op.create_table(
        "user_site_access",
        sa.Column("user_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_on_site", sa.String(50), nullable=False),
        schema="core",
    )
    op.create_index("ix_core_user_site_access_site_id", "user_site_access", ["site_id"], schema="core")

    # -- SITE DATA SCHEMAS --
    op.create_table(
        "site_data_schemas",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version_number", sa.Float, nullable=False),
        sa.Column("schema_definition", sa.Text, nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("change_description", sa.Text, nullable=True),
        sa.Column("created_by_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        schema="config",
    )
    op.create_index(
        "idx_site_data_schemas_site_version", "site_data_schemas", ["site_id", "version_number"], schema="config"
    )
    # sites <-> site_data_schemas is a cycle; the pointer FK is added afterwards.
    op.create_foreign_key(
        "fk_sites_current_schema",
        "sites", "site_data_schemas",
        ["current_schema_version_id"], ["id"],
        source_schema="core", referent_schema="config",
        ondelete="SET NULL",
    )

    # -- DASHBOARDS --
    op.create_table(
        "dashboards",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_by_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("plotly_config_json", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_public", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        schema="config",
    )
    op.create_index("idx_dashboards_site_public", "dashboards", ["site_id", "is_public"], schema="config")
    op.create_index("ix_config_dashboards_created_by_id", "dashboards", ["created_by_id"], schema="config")

    # -- DATA CLEANING RULES --
    op.create_table(
        "data_cleaning_rules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rule_type", sa.String(50), nullable=False),
        sa.Column("config_json", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("priority", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("created_by_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("version_number", sa.Float, nullable=False, server_default=sa.text("1.0")),
        schema="config",
    )
    op.create_index(
        "idx_data_cleaning_rules_site", "data_cleaning_rules", ["site_id", "is_active", "priority"], schema="config"
    )

    # -- DATA VALIDATION RULES --
    op.create_table(
        "data_validation_rules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("column_name", sa.String(255), nullable=False),
        sa.Column("rule_type", sa.String(50), nullable=False),
        sa.Column("config_json", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("priority", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("created_by_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        schema="config",
    )
    op.create_index(
        "idx_data_validation_rules_site", "data_validation_rules", ["site_id", "is_active", "priority"], schema="config"
    )

    # -- DATA ROWS --
    op.create_table(
        "data_rows",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "schema_version_id", sa.Integer,
            sa.ForeignKey("config.site_data_schemas.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("sensor_data", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "date", name="uq_data_rows_site_date"),
        schema="data",
    )
    op.create_index("ix_data_data_rows_schema_version_id", "data_rows", ["schema_version_id"], schema="data")

    # -- UPLOADS --
    op.create_table(
        "uploads",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("rows_parsed", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("rows_inserted", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("validation_status", sa.String(50), nullable=False, server_default="Pending"),
        sa.Column("error_message", sa.Text, nullable=True),
        schema="data",
    )
    op.create_index(
        "idx_uploads_site_uploaded", "uploads", ["site_id", sa.text("uploaded_at DESC")], schema="data"
    )
    op.create_index("ix_data_uploads_user_id", "uploads", ["user_id"], schema="data")

    # -- MODEL VERSIONS --
    op.create_table(
        "model_versions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("blob_storage_path", sa.Text, nullable=False),
        sa.Column("model_format", sa.String(100), nullable=True),
        sa.Column("model_framework", sa.String(100), nullable=True),
        sa.Column("trained_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("training_data_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("training_data_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metrics_json", JSONB, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("version_number", sa.Float, nullable=False),
        schema="ml",
    )
    op.create_index("idx_model_versions_site_active", "model_versions", ["site_id", "is_active"], schema="ml")
    op.create_index("idx_model_versions_site_version", "model_versions", ["site_id", "version_number"], schema="ml")

    # -- PREDICTION RESULTS --
    op.create_table(
        "prediction_results",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "model_version_id", sa.Integer,
            sa.ForeignKey("ml.model_versions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("scenario_name", sa.String(255), nullable=True),
        sa.Column("input_data_json", JSONB, nullable=True),
        sa.Column("prediction_output_json", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("duration_ms", sa.BigInteger, nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(50), nullable=False),
        schema="ml",
    )
    op.create_index(
        "idx_prediction_results_site_created", "prediction_results", ["site_id", "created_at"], schema="ml"
    )
    op.create_index("ix_ml_prediction_results_user_id", "prediction_results", ["user_id"], schema="ml")
    op.create_index(
        "ix_ml_prediction_results_model_version_id", "prediction_results", ["model_version_id"], schema="ml"
    )

    # -- INFERENCE REQUESTS --
    op.create_table(
        "inference_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("status", sa.String(50), nullable=False, server_default="Pending"),
        sa.Column("input_payload", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column(
            "prediction_result_id", sa.Integer,
            sa.ForeignKey("ml.prediction_results.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.BigInteger, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        schema="ml",
    )
    op.create_index(
        "idx_inference_requests_site_requested", "inference_requests", ["site_id", "requested_at"], schema="ml"
    )
    op.create_index(
        "idx_inference_requests_status_requested", "inference_requests", ["status", "requested_at"], schema="ml"
    )
    op.create_index("ix_ml_inference_requests_user_id", "inference_requests", ["user_id"], schema="ml")

    # -- TRAINING JOBS --
    op.create_table(
        "training_jobs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.Integer, sa.ForeignKey("core.sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="Scheduled"),
        sa.Column("training_data_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("training_data_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "model_version_id", sa.Integer,
            sa.ForeignKey("ml.model_versions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("config_json", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("logs_json", JSONB, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("triggered_by_id", sa.Integer, sa.ForeignKey("core.users.id", ondelete="SET NULL"), nullable=True),
        schema="ml",
    )
    op.create_index(
        "idx_training_jobs_site_scheduled", "training_jobs", ["site_id", "scheduled_at"], schema="ml"
    )
    op.create_index(
        "idx_training_jobs_status_scheduled", "training_jobs", ["status", "scheduled_at"], schema="ml"
    )


def downgrade() -> None:
    op.drop_table("training_jobs", schema="ml")
    op.drop_table("inference_requests", schema="ml")
    op.drop_table("prediction_results", schema="ml")
    op.drop_table("model_versions", schema="ml")
    op.drop_table("uploads", schema="data")
    op.drop_table("data_rows", schema="data")
    op.drop_table("data_validation_rules", schema="config")
    op.drop_table("data_cleaning_rules", schema="config")
    op.drop_table("dashboards", schema="config")
    op.drop_constraint("fk_sites_current_schema", "sites", schema="core", type_="foreignkey")
    op.drop_table("site_data_schemas", schema="config")
    op.drop_table("user_site_access", schema="core")
    op.drop_table("sites", schema="core")
    op.drop_table("users", schema="core")
    op.drop_table("companies", schema="core")
    for name in reversed(SCHEMAS):
        op.execute(f"DROP SCHEMA IF EXISTS {name}")
