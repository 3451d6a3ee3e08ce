"""Form submission enums."""

from enum import Enum


class SubmissionKind(str, Enum):
    """Kind of stored submission. Intake submissions carry PHI (encrypted)."""

    INTAKE = "intake"
    CONVERSION = "conversion"


class FormJobType(str, Enum):
    """Side-effect jobs fanned out from a form submission."""

    CTM_CONVERSION = "ctm_conversion"
    EMAIL_NOTIFICATION = "email_notification"


class FormJobStatus(str, Enum):
    """
    Status of form submission jobs.

    pending -> processing -> completed | failed; failed jobs are retried while
    attempts < max_attempts. DEAD is only ever set by operators.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"
