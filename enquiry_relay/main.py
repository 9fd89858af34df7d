import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from enquiry_relay.config import Settings, get_settings, settings
from enquiry_relay.errors import (
    AuthenticationError,
    NotFoundError,
    RelayError,
    StoreError,
    ValidationError,
)
from enquiry_relay.event_router import InboundEventRouter
from enquiry_relay.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from enquiry_relay.metrics import get_metrics, get_metrics_content_type
from enquiry_relay.notifier import TelegramNotifier
from enquiry_relay.schemas import (
    AdminMetadata,
    ErrorResponse,
    HealthResponse,
    LatestMessage,
    MessageResponse,
    MessagesListResponse,
    QRRequest,
    QRResponse,
    SendMessageRequest,
    SendMessageResponse,
    UserResponse,
    UsersListResponse,
    dump_metadata,
)
from enquiry_relay.storage import (
    SessionLocal,
    check_db_health,
    get_db,
    get_user_by_user_id,
    init_db,
    insert_message,
    latest_message_for_user,
    list_messages,
    list_users,
)
from enquiry_relay.telegram_bot import (
    build_application,
    process_webhook_update,
    register_handlers,
    start_transport,
    stop_transport,
)
from enquiry_relay.utils import build_qr_target, generate_qr_data_url, utc_now_iso, verify_webhook_secret


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, wire the bot and start receiving updates
    - Shutdown: stop the bot transport
    """
    init_db()
    if check_db_health():
        logger.info("Database connection successful")
    else:
        logger.warning("Database not ready; required tables: users, messages")

    application = build_application(settings)
    notifier = TelegramNotifier(application.bot)
    router = InboundEventRouter(SessionLocal, notifier, admin_chat_id=settings.ADMIN_TELEGRAM_ID)
    register_handlers(application, router)

    app.state.bot_application = application
    app.state.notifier = notifier

    await start_transport(application, settings)
    logger.info(f"Server ready, bot: @{settings.BOT_USERNAME}, mode: {settings.BOT_MODE}")
    try:
        yield
    finally:
        if settings.BOT_MODE != "disabled":
            await stop_transport(application)
        logger.info("Shutting down gracefully")


app = FastAPI(
    title="Enquiry Relay",
    description="Telegram enquiry bot with an operator dashboard API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


# =============================================================================
# Dependencies & Error Handlers
# =============================================================================

def get_notifier(request: Request) -> TelegramNotifier:
    return request.app.state.notifier


def get_bot_application(request: Request):
    return request.app.state.bot_application


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Request validation failed: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="Invalid request body").model_dump(),
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health(current: Settings = Depends(get_settings)) -> HealthResponse:
    """Liveness probe; touches no dependencies."""
    return HealthResponse(status="OK", timestamp=utc_now_iso(), bot=current.BOT_USERNAME)


@app.get("/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and both
    tables exist, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# QR Code Route
# =============================================================================

@app.post("/qr", response_model=QRResponse, responses={500: {"model": ErrorResponse}})
async def generate_qr(
    payload: Optional[QRRequest] = None,
    current: Settings = Depends(get_settings),
) -> QRResponse:
    """
    Generate a QR code for custom text, a channel handle, or the default
    channel link.
    """
    payload = payload or QRRequest()
    target = build_qr_target(payload.text, payload.channel_handle, current.DEFAULT_CHANNEL)
    logger.info(f"POST /qr: encoding {len(target)} characters")

    try:
        data_url = generate_qr_data_url(target)
    except Exception as e:
        logger.error(f"QR generation error: {e}")
        raise RelayError("Failed to generate QR code") from e

    return QRResponse(qrCode=data_url, text=target)


# =============================================================================
# Messages & Users Routes
# =============================================================================

@app.get("/messages", response_model=MessagesListResponse, responses={500: {"model": ErrorResponse}})
def get_all_messages(db: Session = Depends(get_db)) -> MessagesListResponse:
    """All stored messages, newest first."""
    rows = list_messages(db)
    logger.info(f"GET /messages: returned {len(rows)} messages")
    return MessagesListResponse(messages=[MessageResponse.from_row(row) for row in rows])


@app.get("/users", response_model=UsersListResponse, responses={500: {"model": ErrorResponse}})
def get_users(db: Session = Depends(get_db)) -> UsersListResponse:
    """
    All users, most recently active first, each with its latest message.

    One extra query per user; fine at dashboard scale.
    """
    users = []
    for user in list_users(db):
        latest = latest_message_for_user(db, user.user_id)
        entry = UserResponse.model_validate(user)
        if latest is not None:
            entry.latest_message = LatestMessage(
                message_text=latest.content,
                created_at=latest.timestamp,
                sender_type=latest.sender_type,
            )
        users.append(entry)

    logger.info(f"GET /users: returned {len(users)} users")
    return UsersListResponse(users=users)


# =============================================================================
# Operator Send Route
# =============================================================================

@app.post(
    "/send",
    response_model=SendMessageResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def send_message(
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    notifier: TelegramNotifier = Depends(get_notifier),
) -> SendMessageResponse:
    """
    Send an operator reply to a user and record it with sender_type=admin.

    The reply is reported as sent even if recording it fails afterwards.
    """
    if not payload.user_id or not payload.message:
        raise ValidationError("User ID and message are required")

    user = await run_in_threadpool(get_user_by_user_id, db, payload.user_id)
    if user is None:
        raise NotFoundError("User not found")

    chat_id = user.chat_id
    recipient = f"{user.first_name} {user.last_name}"

    await notifier.send(chat_id, payload.message)

    try:
        await run_in_threadpool(
            insert_message,
            db,
            user_id=payload.user_id,
            chat_id=chat_id,
            message_type="text",
            content=payload.message,
            metadata=dump_metadata(AdminMetadata()),
            sender_type="admin",
        )
    except StoreError as e:
        logger.error(f"Error storing admin message for user_id={payload.user_id}: {e}")

    logger.info(f"POST /send: message sent to user_id={payload.user_id}")
    return SendMessageResponse(message=f"Message sent to {recipient}")


# =============================================================================
# Telegram Webhook Route
# =============================================================================

@app.post("/webhook/{token}")
async def telegram_webhook(
    token: str,
    request: Request,
    x_telegram_secret: Annotated[str | None, Header(alias="X-Telegram-Bot-Api-Secret-Token")] = None,
    current: Settings = Depends(get_settings),
    application=Depends(get_bot_application),
):
    """
    Receive an update pushed by Telegram (BOT_MODE=webhook).

    The path token must equal the bot token; when WEBHOOK_SECRET is set the
    secret header must match it.
    """
    if token != current.TELEGRAM_BOT_TOKEN:
        log_webhook_data(request, result="unknown_token")
        raise NotFoundError("Not found")

    if not verify_webhook_secret(x_telegram_secret, current.WEBHOOK_SECRET):
        log_webhook_data(request, result="invalid_secret")
        raise AuthenticationError("invalid secret token")

    if current.BOT_MODE == "disabled":
        log_webhook_data(request, result="bot_disabled")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ErrorResponse(error="Bot transport disabled").model_dump(),
        )

    try:
        payload = await request.json()
    except ValueError as e:
        log_webhook_data(request, result="validation_error")
        raise ValidationError("Invalid JSON") from e

    try:
        update = await process_webhook_update(application, payload)
    except ValidationError:
        log_webhook_data(request, result="validation_error")
        raise
    log_webhook_data(request, update_id=update.update_id, result="accepted")
    return {"success": True}


# =============================================================================
# Metrics & Static Routes
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


@app.get("/", include_in_schema=False)
async def landing_page() -> FileResponse:
    return FileResponse(STATIC_DIR / "index.html")


@app.get("/admin", include_in_schema=False)
async def admin_dashboard() -> FileResponse:
    return FileResponse(STATIC_DIR / "admin.html")


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT, log_config=None)
