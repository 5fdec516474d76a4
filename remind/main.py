import asyncio
from contextlib import asynccontextmanager
from http import HTTPStatus
from uuid import UUID

from fastapi import (
    FastAPI,
    Request,
    Response,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError, ValidationException
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from remind.helpers.config import CONFIG
from remind.helpers.engine import ReminderEngine
from remind.helpers.errors import ReminderNotFoundError
from remind.helpers.logging import logger
from remind.helpers.monitoring import (
    SpanAttributeEnum,
    start_as_current_span,
    suppress,
)
from remind.models.error import ErrorModel
from remind.models.notification import NotificationActionModel
from remind.models.readiness import ReadinessEnum, ReadinessModel
from remind.models.reminder import (
    ReminderCreateModel,
    ReminderDeleteManyModel,
    ReminderDeleteManyResultModel,
    ReminderListModel,
    ReminderModel,
)
from remind.persistence.reminders import ReminderPersistence

# First log
logger.info(
    "remind v%s",
    CONFIG.version,
)

# Persistences
_gateway = CONFIG.notification.instance
_store = CONFIG.store.instance

# One engine for the whole process, started with the app
_engine = ReminderEngine(
    config=CONFIG.reminders,
    gateway=_gateway,
    persistence=ReminderPersistence(
        key=CONFIG.reminders.slot_key,
        store=_store,
    ),
)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    await _engine.initialize()

    try:
        yield

    # Stop listening, then drop the pending local notifications
    finally:
        await _engine.close()
        await _gateway.close()


# FastAPI
api = FastAPI(
    description="Track personal reminders, and get notified when they are due.",
    lifespan=lifespan,
    title="remind",
    version=CONFIG.version,
)


@api.get("/health/liveness")
@start_as_current_span("health_liveness_get")
async def health_liveness_get() -> None:
    """
    Liveness probe, answers as long as the process serves HTTP.
    """
    return


@api.get(
    "/health/readiness",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("health_readiness_get")
async def health_readiness_get() -> JSONResponse:
    """
    Readiness probe, checks the engine is started, the store and the notification gateway.

    Returns a 200 OK with every check, or a 503 Service Unavailable if one of them fails.
    """
    # Components are checked concurrently
    (
        store_check,
        notification_check,
    ) = await asyncio.gather(
        _store.readiness(),
        _gateway.readiness(),
    )
    readiness = ReadinessModel.from_checks(
        {
            "notification": notification_check,
            "startup": ReadinessEnum.OK if _engine.running else ReadinessEnum.FAIL,
            "store": store_check,
        }
    )
    return JSONResponse(
        content=readiness.model_dump(mode="json"),
        status_code=(
            HTTPStatus.OK
            if readiness.status == ReadinessEnum.OK
            else HTTPStatus.SERVICE_UNAVAILABLE
        ),
    )


@api.get("/reminders")
@start_as_current_span("reminder_list_get")
async def reminder_list_get() -> ReminderListModel:
    """
    REST API to list all reminders.

    No parameters are expected.

    Returns the reminders sorted by due time, and whether notifications were refused, in JSON format.
    """
    return _reminder_list()


@api.post(
    "/reminders",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("reminder_post")
async def reminder_post(request: Request) -> ReminderModel:
    """
    REST API to create a reminder.

    Required body parameters is a JSON object `ReminderCreateModel`. The title must not be empty.

    Returns a single reminder object `ReminderModel`, in JSON format.
    """
    try:
        body = await request.json()
        initiate = ReminderCreateModel.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError([str(e)]) from e

    reminder = await _engine.create(
        fire_at=initiate.fire_at,
        title=initiate.title,
    )
    return TypeAdapter(ReminderModel).dump_python(reminder)


@api.get("/reminders/{reminder_id}")
@start_as_current_span("reminder_get")
async def reminder_get(reminder_id: UUID) -> ReminderModel:
    """
    REST API to get a reminder by its ID.

    Returns a single reminder object `ReminderModel`, in JSON format.
    """
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    return TypeAdapter(ReminderModel).dump_python(_engine.get(reminder_id))


@api.post("/reminders/{reminder_id}/toggle")
@start_as_current_span("reminder_toggle_post")
async def reminder_toggle_post(reminder_id: UUID) -> ReminderModel:
    """
    REST API to flip the completion of a reminder.

    Completing a reminder cancels its pending notification. Un-completing it does not schedule it again.

    Returns a single reminder object `ReminderModel`, in JSON format.
    """
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    reminder = await _engine.toggle(reminder_id)
    return TypeAdapter(ReminderModel).dump_python(reminder)


@api.delete(
    "/reminders/{reminder_id}",
    status_code=HTTPStatus.NO_CONTENT,
)
@start_as_current_span("reminder_delete")
async def reminder_delete(reminder_id: UUID) -> Response:
    """
    REST API to delete a reminder, and its pending notification.

    Returns a 204 No Content if deleted, a 404 Not Found if the reminder does not exist.
    """
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    await _engine.delete(reminder_id)
    return Response(status_code=HTTPStatus.NO_CONTENT)


@api.post("/reminders/delete")
@start_as_current_span("reminder_delete_many_post")
async def reminder_delete_many_post(
    body: ReminderDeleteManyModel,
) -> ReminderDeleteManyResultModel:
    """
    REST API to delete many reminders at once.

    Required body parameters is a JSON object `ReminderDeleteManyModel`. Unknown IDs are ignored.

    Returns the number of deleted reminders, in JSON format.
    """
    deleted = await _engine.delete_many(body.ids)
    return ReminderDeleteManyResultModel(deleted=deleted)


@api.post(
    "/notifications/{correlation_id}/actions",
    status_code=HTTPStatus.ACCEPTED,
)
@start_as_current_span("notification_action_post")
async def notification_action_post(
    correlation_id: str,
    body: NotificationActionModel,
) -> Response:
    """
    Handle a user action performed on a notification, for the reminder with the given ID.

    Actions are applied asynchronously. Unknown reminders are ignored.

    Returns a 202 Accepted.
    """
    if not _gateway.act(
        action=body.action,
        correlation_id=correlation_id,
    ):
        logger.warning("No subscriber for notification action on %s", correlation_id)
    return Response(status_code=HTTPStatus.ACCEPTED)


@api.websocket("/reminders/stream")
async def reminder_stream_websocket(websocket: WebSocket) -> None:
    """
    Push the reminders list, sorted by due time, on connection and after every change.
    """
    await websocket.accept()
    logger.info("WebSocket connection established")

    changes: asyncio.Queue[ReminderListModel] = asyncio.Queue()

    async def _on_change(reminders: list[ReminderModel]) -> None:
        await changes.put(_reminder_list(reminders))

    async def _send_changes() -> None:
        """
        Send the changes to the WebSocket.
        """
        # Loop until the WebSocket is disconnected
        with suppress(WebSocketDisconnect):
            while True:
                reminders = await changes.get()
                changes.task_done()
                await websocket.send_json(reminders.model_dump(mode="json"))

    async def _consume() -> None:
        """
        Read the WebSocket until the client leaves, incoming messages are ignored.
        """
        with suppress(WebSocketDisconnect):
            async for _ in websocket.iter_text():
                pass

    _engine.subscribe(_on_change)
    await changes.put(_reminder_list())
    sender = asyncio.create_task(_send_changes())
    try:
        await _consume()
    finally:
        _engine.unsubscribe(_on_change)
        sender.cancel()
        logger.info("WebSocket connection closed")


@api.exception_handler(ReminderNotFoundError)
async def not_found_exception_handler(
    request: Request,  # noqa: ARG001
    exc: ReminderNotFoundError,
) -> JSONResponse:
    """
    Handle unknown reminders and return the error in a standard format.
    """
    return _standard_error(
        message=str(exc),
        status_code=HTTPStatus.NOT_FOUND,
    )


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions and return the error in a standard format.
    """
    return _standard_error(
        message=exc.detail,
        status_code=HTTPStatus(exc.status_code),
    )


@api.exception_handler(RequestValidationError)
@api.exception_handler(ValueError)
async def validation_exception_handler(
    request: Request,  # noqa: ARG001
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation exceptions and return the error in a standard format.

    Empty reminder titles are raised as `ValueError` by the engine.
    """
    return _validation_error(exc)


def _reminder_list(reminders: list[ReminderModel] | None = None) -> ReminderListModel:
    """
    Build the display view of the collection: sorted by due time, earliest first.
    """
    return ReminderListModel(
        notification_denied=_engine.notification_denied,
        reminders=sorted(
            _engine.reminders if reminders is None else reminders,
            key=lambda reminder: reminder.fire_at,
        ),
    )


def _validation_error(e: ValidationError | Exception) -> JSONResponse:
    """
    Generate a standard validation error response.
    """
    messages = []
    if isinstance(e, ValidationError) or isinstance(e, ValidationException):
        messages = [
            str(x) for x in e.errors()
        ]  # Pydantic returns well formatted errors, use them
    elif isinstance(e, ValueError):
        messages = [str(e)]
    return _standard_error(
        details=messages,
        message="Validation error",
        status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
    )


def _standard_error(
    message: str,
    status_code: HTTPStatus,
    details: list[str] | None = None,
) -> JSONResponse:
    """
    Generate a standard error response.
    """
    return JSONResponse(
        content=ErrorModel.build(
            details=details,
            message=message,
        ).model_dump(mode="json"),
        status_code=status_code,
    )
