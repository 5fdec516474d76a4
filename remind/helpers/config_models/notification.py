from enum import Enum
from functools import cached_property

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from remind.persistence.inotification import INotification


class ModeEnum(str, Enum):
    LOCAL = "local"
    """Deliver notifications from the running process."""


class LocalModel(BaseModel, frozen=True):
    close_timeout_sec: float = Field(default=5.0, gt=0)
    permission_granted: bool = True

    @cached_property
    def instance(self) -> INotification:
        from remind.persistence.local import (
            LocalNotification,
        )

        return LocalNotification(self)


class NotificationModel(BaseModel):
    mode: ModeEnum = ModeEnum.LOCAL
    local: LocalModel | None = LocalModel()  # Object is fully defined by default

    @field_validator("local")
    @classmethod
    def _validate_local(
        cls,
        local: LocalModel | None,
        info: ValidationInfo,
    ) -> LocalModel | None:
        if not local and info.data.get("mode", None) == ModeEnum.LOCAL:
            raise ValueError("Local notification config required")
        return local

    @cached_property
    def instance(self) -> INotification:
        assert self.local
        return self.local.instance
