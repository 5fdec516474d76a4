from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from remind.helpers.config_models.monitoring import MonitoringModel
from remind.helpers.config_models.notification import NotificationModel
from remind.helpers.config_models.reminders import RemindersModel
from remind.helpers.config_models.store import StoreModel


class RootModel(BaseSettings):
    # Pydantic settings
    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        env_nested_delimiter="__",
        env_prefix="",
    )

    # Immutable fields
    version: str = Field(default="0.0.0-unknown", frozen=True)
    # Editable fields
    monitoring: MonitoringModel = (
        MonitoringModel()
    )  # Object is fully defined by default
    notification: NotificationModel = (
        NotificationModel()
    )  # Object is fully defined by default
    reminders: RemindersModel = RemindersModel()  # Object is fully defined by default
    store: StoreModel = StoreModel()  # Object is fully defined by default

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],  # noqa: ARG003
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Give env vars the last word over the loaded file.

        Priority, highest first: env vars, `.env` file, secrets directory, then the values loaded by `load_config`.
        """
        return env_settings, dotenv_settings, file_secret_settings, init_settings
