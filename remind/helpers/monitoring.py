from asyncio import iscoroutinefunction
from contextlib import contextmanager
from enum import Enum
from functools import wraps
from os import environ

from opentelemetry import metrics, trace
from opentelemetry.metrics._internal.instrument import Counter, Gauge
from opentelemetry.semconv.attributes import service_attributes
from opentelemetry.trace import Status, StatusCode
from opentelemetry.util.types import Attributes, AttributeValue
from structlog.contextvars import bind_contextvars, get_contextvars

MODULE_NAME = "remind"
VERSION = environ.get("VERSION", "0.0.0-unknown")


class SpanAttributeEnum(str, Enum):
    """
    Identifiers followed across logs, spans and metrics.
    """

    NOTIFICATION_HANDLE = "notification.handle"
    """Gateway-assigned notification identifier."""
    REMINDER_ID = "reminder.id"
    """Technical reminder identifier."""

    def attribute(self, value: AttributeValue) -> None:
        """
        Bind the value to the log context, and to the current span when it is recorded.
        """
        bind_contextvars(**{self.value: value})
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute(self.value, value)


class SpanMeterEnum(str, Enum):
    """
    OpenTelemetry metrics, named after what they measure.
    """

    NOTIFICATION_CANCELLED = "notification.cancelled"
    NOTIFICATION_DENIED = "notification.denied"
    NOTIFICATION_SCHEDULED = "notification.scheduled"
    PERSISTENCE_SAVE_FAILED = "persistence.save.failed"
    REMINDER_COUNT = "reminder.count"
    REMINDER_CREATED = "reminder.created"

    def counter(self, description: str, unit: str) -> Counter:
        return meter.create_counter(
            description=description,
            name=self.value,
            unit=unit,
        )

    def gauge(self, description: str, unit: str) -> Gauge:
        return meter.create_gauge(
            description=description,
            name=self.value,
            unit=unit,
        )


# Attributes
_default_attributes = {
    service_attributes.SERVICE_NAME: MODULE_NAME,
    service_attributes.SERVICE_VERSION: VERSION,
}

# Tracer and meter are no-op until an OpenTelemetry SDK is configured, e.g. with "opentelemetry-instrument"
tracer = trace.get_tracer(
    attributes=_default_attributes,
    instrumenting_module_name=MODULE_NAME,
)
meter = metrics.get_meter(
    name=MODULE_NAME,
)

# Init metrics
notification_cancelled = SpanMeterEnum.NOTIFICATION_CANCELLED.counter(
    description="Notifications cancelled at the gateway.",
    unit="notifications",
)
notification_refused = SpanMeterEnum.NOTIFICATION_DENIED.counter(
    description="Notifications refused by the gateway, for missing permission.",
    unit="notifications",
)
notification_scheduled = SpanMeterEnum.NOTIFICATION_SCHEDULED.counter(
    description="Notifications scheduled at the gateway.",
    unit="notifications",
)
persistence_save_failed = SpanMeterEnum.PERSISTENCE_SAVE_FAILED.counter(
    description="Collection saves that did not reach the store.",
    unit="saves",
)
reminder_count = SpanMeterEnum.REMINDER_COUNT.gauge(
    description="Reminders held in the collection.",
    unit="reminders",
)
reminder_created = SpanMeterEnum.REMINDER_CREATED.counter(
    description="Reminders created.",
    unit="reminders",
)


def _attributes() -> dict[str, AttributeValue]:
    """
    Service attributes, overridden by the ones bound to the current context.
    """
    return {**_default_attributes, **get_contextvars()}


def gauge_set(
    metric: Gauge,
    value: float | int,
):
    metric.set(
        amount=value,
        attributes=_attributes(),
    )


def counter_add(
    metric: Counter,
    value: float | int,
):
    metric.add(
        amount=value,
        attributes=_attributes(),
    )


def start_as_current_span(
    name: str,
    attributes: Attributes = None,
):
    """
    Decorator running the function in a new span, made current for its duration.

    Works for both sync and async functions.
    """

    def _wrapper(func):
        if iscoroutinefunction(func):

            @wraps(func)
            async def _async_inner(*args, **kwargs):
                with tracer.start_as_current_span(name=name, attributes=attributes):
                    return await func(*args, **kwargs)

            return _async_inner

        @wraps(func)
        def _inner(*args, **kwargs):
            with tracer.start_as_current_span(name=name, attributes=attributes):
                return func(*args, **kwargs)

        return _inner

    return _wrapper


@contextmanager
def suppress(*exceptions):
    """
    Ignore the given exceptions, still recording them on the current span.

    The span keeps an OK status, as the error is expected.
    """
    try:
        yield
    except exceptions as e:
        span = trace.get_current_span()
        span.record_exception(e)
        span.set_status(Status(StatusCode.OK))
