from enum import Enum

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class ActionEnum(str, Enum):
    COMPLETE = "complete"
    """Mark the reminder as completed, from the notification."""
    DISMISS = "dismiss"
    """Close the notification without acting on it."""
    OPEN = "open"
    """Open the application from the notification."""


class EventKindEnum(str, Enum):
    FIRED = "fired"
    """The notification was presented to the user."""
    USER_ACTED = "user_acted"
    """The user performed an action on a presented notification."""


class NotificationActionModel(BaseModel):
    action: ActionEnum


class NotificationEventModel(BaseModel):
    # Place "kind" first, validators below depend on it
    kind: EventKindEnum
    action: ActionEnum | None = Field(default=None, validate_default=True)
    correlation_id: str

    @field_validator("action")
    @classmethod
    def _validate_action(
        cls,
        action: ActionEnum | None,
        info: ValidationInfo,
    ) -> ActionEnum | None:
        if not action and info.data.get("kind", None) == EventKindEnum.USER_ACTED:
            raise ValueError("Action required for user events")
        return action
