from pydantic import BaseModel, Field


class RemindersModel(BaseModel, frozen=True):
    notification_title: str = Field(default="Reminder", min_length=1)
    """Title of every notification, the body is the reminder title."""
    reschedule_on_load: bool = False
    """
    Schedule again the active reminders found at startup.

    Disabled by default: a reminder surviving a restart keeps its stored handle and may never notify.
    """
    schedule_timeout_sec: float = Field(default=5.0, gt=0)
    slot_key: str = Field(default="savedReminders", min_length=1)
