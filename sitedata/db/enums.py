"""Enumerations shared by the ORM models and API schemas.

Values are the persisted string names; columns never store integer codes.
"""

import enum


class UserRole(str, enum.Enum):
    """Global role."""

    USER = "User"
    MANAGER = "Manager"
    ADMIN = "Admin"
    SUPER_USER = "SuperUser"

    @property
    def bypasses_site_grants(self) -> bool:
        return self in (UserRole.ADMIN, UserRole.SUPER_USER)


class SiteRole(str, enum.Enum):
    """Per-site role. Checks compare exact role sets, never a ranking."""

    VIEWER = "Viewer"
    OPERATOR = "Operator"
    SITE_ADMIN = "SiteAdmin"
    OWNER = "Owner"


# Role sets passed to SiteAuthorizationService.has_site_role by the routers.
WRITE_ROLES = frozenset({SiteRole.OWNER, SiteRole.SITE_ADMIN, SiteRole.OPERATOR})
ADMIN_ROLES = frozenset({SiteRole.OWNER, SiteRole.SITE_ADMIN})


class SiteStatus(str, enum.Enum):
    PENDING_SETUP = "PendingSetup"
    DATA_UPLOADED = "DataUploaded"
    SCHEMA_CONFIGURED = "SchemaConfigured"
    MODEL_TRAINING = "ModelTraining"
    ACTIVE = "Active"
    SUSPENDED = "Suspended"


class UploadValidationStatus(str, enum.Enum):
    PENDING = "Pending"
    VALIDATED = "Validated"
    INVALID = "Invalid"


class InferenceRequestStatus(str, enum.Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class PredictionStatus(str, enum.Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class TrainingJobStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class CleaningRuleType(str, enum.Enum):
    UNKNOWN = "Unknown"
    REMOVE_NULLS = "RemoveNulls"
    REPLACE_OUTLIERS = "ReplaceOutliers"
    SCALE_NORMALIZE = "ScaleNormalize"
    MAP_VALUES = "MapValues"
    CUSTOM = "Custom"


class ValidationRuleType(str, enum.Enum):
    RANGE = "Range"
    REGEX = "Regex"
    ALLOWED_VALUES = "AllowedValues"
    NOT_NULL = "NotNull"
    CUSTOM = "Custom"
