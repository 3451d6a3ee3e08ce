"""Enum definitions for application constants."""

from opshub.db.enums.auth import ADMIN_ROLES, Role
from opshub.db.enums.calls import CallCategory, CallerType
from opshub.db.enums.defaults import (
    DEFAULT_CALL_CATEGORY,
    DEFAULT_CALLER_TYPE,
    DEFAULT_FORM_JOB_STATUS,
    DEFAULT_MAX_JOB_ATTEMPTS,
    DEFAULT_TASK_STATUS,
)
from opshub.db.enums.forms import FormJobStatus, FormJobType, SubmissionKind
from opshub.db.enums.tasks import (
    AutomationActionType,
    AutomationOutcome,
    AutomationScope,
    AutomationTriggerType,
    ItemChangeOrigin,
)

__all__ = [
    "ADMIN_ROLES",
    "AutomationActionType",
    "AutomationOutcome",
    "AutomationScope",
    "AutomationTriggerType",
    "CallCategory",
    "CallerType",
    "DEFAULT_CALL_CATEGORY",
    "DEFAULT_CALLER_TYPE",
    "DEFAULT_FORM_JOB_STATUS",
    "DEFAULT_MAX_JOB_ATTEMPTS",
    "DEFAULT_TASK_STATUS",
    "FormJobStatus",
    "FormJobType",
    "ItemChangeOrigin",
    "Role",
    "SubmissionKind",
]
