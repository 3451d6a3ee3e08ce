"""Default values shared by models and migrations."""

from opshub.db.enums.calls import CallCategory, CallerType
from opshub.db.enums.forms import FormJobStatus

DEFAULT_FORM_JOB_STATUS = FormJobStatus.PENDING
DEFAULT_CALL_CATEGORY = CallCategory.UNREVIEWED
DEFAULT_CALLER_TYPE = CallerType.NEW
DEFAULT_TASK_STATUS = "To Do"
DEFAULT_MAX_JOB_ATTEMPTS = 5
