from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator


def to_local_minute(value: datetime) -> datetime:
    """
    Normalize a point in time to a naive local wall-clock time, at minute granularity.

    Aware values are converted to the local timezone first. Seconds and microseconds are dropped, as notification triggers only resolve to the minute.
    """
    if value.tzinfo:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


class ReminderModel(BaseModel):
    # Immutable fields
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), frozen=True)
    fire_at: datetime = Field(frozen=True)
    id: UUID = Field(default_factory=uuid4, frozen=True)
    title: str = Field(frozen=True)
    # Editable fields
    completed: bool = False
    notification_handle: str | None = None

    @field_validator("fire_at")
    @classmethod
    def _validate_fire_at(cls, fire_at: datetime) -> datetime:
        return to_local_minute(fire_at)


class ReminderCreateModel(BaseModel):
    fire_at: datetime
    title: str


class ReminderDeleteManyModel(BaseModel):
    ids: set[UUID]


class ReminderDeleteManyResultModel(BaseModel):
    deleted: int


class ReminderListModel(BaseModel):
    notification_denied: bool
    reminders: list[ReminderModel]
