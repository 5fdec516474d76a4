from logging import Logger, _nameToLevel, basicConfig

from structlog import (
    configure_once,
    get_logger as structlog_get_logger,
    make_filtering_bound_logger,
)
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import (
    JSONRenderer,
    StackInfoRenderer,
    TimeStamper,
    UnicodeDecoder,
    add_log_level,
    format_exc_info,
)
from structlog.stdlib import PositionalArgumentsFormatter
from structlog.typing import Processor

from remind.helpers.config import CONFIG
from remind.helpers.config_models.monitoring import LoggingFormatEnum, LoggingModel


def _processors(config: LoggingModel) -> list[Processor]:
    """
    Build the event pipeline, the renderer comes last.

    Reminder IDs and notification handles bound in the context are added to every event.
    """
    shared: list[Processor] = [
        merge_contextvars,
        add_log_level,
        PositionalArgumentsFormatter(),  # Keep the "%s" style of the stdlib
        TimeStamper(fmt="iso", utc=True),
        StackInfoRenderer(),
        UnicodeDecoder(),
    ]
    if config.format == LoggingFormatEnum.JSON:
        # Tracebacks must be strings before serialization
        return [*shared, format_exc_info, JSONRenderer()]
    return [*shared, ConsoleRenderer()]


_config = CONFIG.monitoring.logging

# Dependencies log through the stdlib, at their own level
basicConfig(level=_config.sys_level.value)

configure_once(
    cache_logger_on_first_use=True,
    context_class=dict,
    processors=_processors(_config),
    wrapper_class=make_filtering_bound_logger(_nameToLevel[_config.app_level.value]),
)

# Typed as the stdlib Logger, the bound logger exposes the same methods
logger: Logger = structlog_get_logger("remind")
