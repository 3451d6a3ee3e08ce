"""Task automation enums."""

from enum import Enum


class AutomationScope(str, Enum):
    BOARD = "board"
    GLOBAL = "global"


class AutomationTriggerType(str, Enum):
    """Events that can fire a task automation."""

    STATUS_CHANGE = "status_change"
    ASSIGNEE_ADDED = "assignee_added"
    DUE_DATE_RELATIVE = "due_date_relative"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class AutomationActionType(str, Enum):
    """Side effects a task automation can perform."""

    NOTIFY_ADMINS = "notify_admins"
    NOTIFY_ASSIGNEES = "notify_assignees"
    SET_STATUS = "set_status"
    SET_NEEDS_ATTENTION = "set_needs_attention"
    ADD_UPDATE = "add_update"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class AutomationOutcome(str, Enum):
    """Outcome recorded on every automation run."""

    FIRED = "fired"
    SKIPPED = "skipped"
    ERROR = "error"


class ItemChangeOrigin(str, Enum):
    """Who wrote a task item change. Automation writes never re-trigger rules."""

    USER = "user"
    AUTOMATION = "automation"
