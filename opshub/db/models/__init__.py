"""SQLAlchemy ORM models."""

from opshub.db.models.calls import CallLog
from opshub.db.models.clients import ActiveClient, ClientProfile, ClientService
from opshub.db.models.forms import FormDefinition, FormSubmission, FormSubmissionJob
from opshub.db.models.notifications import Notification
from opshub.db.models.tasks import (
    TaskAutomationRun,
    TaskBoard,
    TaskBoardAutomation,
    TaskGlobalAutomation,
    TaskGroup,
    TaskItem,
    TaskItemAssignee,
    TaskUpdate,
)
from opshub.db.models.users import User, UserNotificationSettings

__all__ = [
    "ActiveClient",
    "CallLog",
    "ClientProfile",
    "ClientService",
    "FormDefinition",
    "FormSubmission",
    "FormSubmissionJob",
    "Notification",
    "TaskAutomationRun",
    "TaskBoard",
    "TaskBoardAutomation",
    "TaskGlobalAutomation",
    "TaskGroup",
    "TaskItem",
    "TaskItemAssignee",
    "TaskUpdate",
    "User",
    "UserNotificationSettings",
]
