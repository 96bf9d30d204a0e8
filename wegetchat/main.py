import functools
import logging
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Callable, Optional, TypeVar

from fastapi import Cookie, Depends, FastAPI, File, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from wegetchat.config import Settings, get_settings
from wegetchat.entities import Attachment
from wegetchat.errors import InvalidCredentialError, NotFoundError, WeGetChatError
from wegetchat.logging_utils import RequestLoggingMiddleware, log_mutation_data, setup_logging
from wegetchat.metrics import get_metrics, get_metrics_content_type
from wegetchat.schemas import (
    ConversationsResponse,
    CredentialsRequest,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    MessagesResponse,
    NotificationView,
    NotificationsResponse,
    OkResponse,
    UserResponse,
    UsersResponse,
)
from wegetchat.security import hash_password, read_session, sign_session
from wegetchat.service import ChatService
from wegetchat.storage import SnapshotStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"

T = TypeVar("T")


def build_service(settings: Settings) -> ChatService:
    return ChatService(
        SnapshotStore(settings.DATABASE_URL),
        notification_retention=settings.NOTIFICATION_RETENTION,
        hasher=functools.partial(hash_password, iterations=settings.PASSWORD_HASH_ITERATIONS),
    )


def save_upload(upload_dir: Path, upload: UploadFile) -> Attachment:
    """Store an uploaded file as <epoch-ms>-<uuid><ext> and reference it."""
    ext = Path(upload.filename or "").suffix
    filename = f"{int(time.time() * 1000)}-{uuid.uuid4()}{ext}"
    with (upload_dir / filename).open("wb") as out:
        shutil.copyfileobj(upload.file, out)
    logger.info(f"Upload stored: {filename}")
    return Attachment(url=f"/uploads/{filename}", name=upload.filename or "")


def discard_upload(upload_dir: Path, attachment: Optional[Attachment]) -> None:
    """Remove a stored upload whose mutation did not go through."""
    if attachment is None:
        return
    filename = attachment.url.rsplit("/", 1)[-1]
    (upload_dir / filename).unlink(missing_ok=True)
    logger.info(f"Upload discarded: {filename}")


# =============================================================================
# Dependencies
# =============================================================================

def get_service(request: Request) -> ChatService:
    return request.app.state.service


def get_current_user_id(
    request: Request,
    session: Annotated[Optional[str], Cookie(alias=SESSION_COOKIE)] = None,
) -> str:
    """Resolve the session cookie to an existing user id, or fail with 401."""
    settings: Settings = request.app.state.settings
    user_id = read_session(session, settings.SESSION_SECRET) if session else None
    if user_id is None:
        raise InvalidCredentialError("Not authenticated")
    try:
        get_service(request).get_profile(user_id)
    except NotFoundError:
        raise InvalidCredentialError("Session expired")
    return user_id


ServiceDep = Annotated[ChatService, Depends(get_service)]
CallerDep = Annotated[str, Depends(get_current_user_id)]


def run_mutation(request: Request, operation: str, call: Callable[[], T]) -> T:
    """Call a mutating operation and attach its outcome to the request log."""
    try:
        result = call()
    except WeGetChatError as e:
        log_mutation_data(request, operation, e.kind)
        raise
    log_mutation_data(request, operation)
    return result


def start_session(response: Response, request: Request, user_id: str) -> None:
    settings: Settings = request.app.state.settings
    response.set_cookie(
        SESSION_COOKIE,
        sign_session(user_id, settings.SESSION_SECRET),
        httponly=True,
        samesite="lax",
    )


# =============================================================================
# App Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    if not settings.SESSION_SECRET:
        raise ValueError("SESSION_SECRET must be set to a non-empty value")
    setup_logging(settings.LOG_LEVEL)

    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        - Startup: load the snapshot and build the service
        - Shutdown: release the database engine
        """
        app.state.service = build_service(settings)
        yield
        app.state.service.close()

    app = FastAPI(
        title="WeGetChat API",
        description="Direct messages, friends and notifications",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_middleware(RequestLoggingMiddleware)
    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")

    @app.exception_handler(WeGetChatError)
    async def handle_core_error(request: Request, exc: WeGetChatError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    # =========================================================================
    # Health Check Routes
    # =========================================================================

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness check - always returns 200 once the app is running."""
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    async def health_ready(response: Response, service: ServiceDep) -> HealthResponse:
        """
        Readiness check - returns 200 only if the snapshot database is
        reachable and every table exists.

        Otherwise returns 503 (Service Unavailable).
        """
        if not service.check_health():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="Database not reachable or schema not applied"
            )

        return HealthResponse(status="ready")

    # =========================================================================
    # Account Routes
    # =========================================================================

    error_responses = {
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    }

    # register and login hash passwords; plain def runs them in the threadpool
    @app.post("/api/register", response_model=UserResponse, responses=error_responses)
    def register(
        body: CredentialsRequest, request: Request, response: Response, service: ServiceDep
    ) -> UserResponse:
        user = run_mutation(request, "register", lambda: service.register(body.username, body.password))
        start_session(response, request, user.id)
        return UserResponse(user=user)

    @app.post("/api/login", response_model=UserResponse, responses=error_responses)
    def login(
        body: CredentialsRequest, request: Request, response: Response, service: ServiceDep
    ) -> UserResponse:
        user = service.verify_credential(body.username, body.password)
        start_session(response, request, user.id)
        return UserResponse(user=user)

    @app.post("/api/logout", response_model=OkResponse)
    async def logout(response: Response, caller: CallerDep) -> OkResponse:
        response.delete_cookie(SESSION_COOKIE)
        return OkResponse()

    @app.get("/api/me", response_model=UserResponse)
    async def me(caller: CallerDep, service: ServiceDep) -> UserResponse:
        return UserResponse(user=service.get_profile(caller))

    @app.put("/api/settings", response_model=UserResponse, responses=error_responses)
    async def update_settings(
        request: Request,
        caller: CallerDep,
        service: ServiceDep,
        status_text: Annotated[Optional[str], Form(alias="statusText")] = None,
        notifications_enabled: Annotated[Optional[str], Form(alias="notificationsEnabled")] = None,
        pfp: Annotated[Optional[UploadFile], File()] = None,
    ) -> UserResponse:
        stored = save_upload(upload_dir, pfp) if pfp is not None else None
        enabled = notifications_enabled == "true" if notifications_enabled is not None else None
        try:
            user = run_mutation(
                request,
                "update_profile",
                lambda: service.update_profile(
                    caller, status_text, enabled, stored.url if stored else None
                ),
            )
        except WeGetChatError:
            discard_upload(upload_dir, stored)
            raise
        return UserResponse(user=user)

    # =========================================================================
    # Friends Routes
    # =========================================================================

    @app.get("/api/users/search", response_model=UsersResponse)
    async def search_users(
        caller: CallerDep,
        service: ServiceDep,
        q: Annotated[str, Query(description="Case-insensitive username substring")] = "",
    ) -> UsersResponse:
        return UsersResponse(users=service.search_users(caller, q))

    @app.post("/api/friends/{friend_id}", response_model=OkResponse, responses=error_responses)
    async def add_friend(
        friend_id: str, request: Request, caller: CallerDep, service: ServiceDep
    ) -> OkResponse:
        run_mutation(request, "add_friend", lambda: service.add_friend(caller, friend_id))
        return OkResponse()

    # =========================================================================
    # Conversation Routes
    # =========================================================================

    @app.get("/api/conversations", response_model=ConversationsResponse)
    async def list_conversations(caller: CallerDep, service: ServiceDep) -> ConversationsResponse:
        return ConversationsResponse(conversations=service.list_conversations(caller))

    @app.get(
        "/api/conversations/{conversation_id}/messages",
        response_model=MessagesResponse,
        responses=error_responses,
    )
    async def get_messages(
        conversation_id: str, caller: CallerDep, service: ServiceDep
    ) -> MessagesResponse:
        return MessagesResponse(messages=service.get_messages(caller, conversation_id))

    @app.post(
        "/api/conversations/{conversation_id}/messages",
        response_model=MessageResponse,
        responses=error_responses,
    )
    async def send_message(
        conversation_id: str,
        request: Request,
        caller: CallerDep,
        service: ServiceDep,
        body: Annotated[Optional[str], Form()] = None,
        attachment: Annotated[Optional[UploadFile], File()] = None,
    ) -> MessageResponse:
        # Check access before writing anything to disk
        service.get_messages(caller, conversation_id)
        stored = save_upload(upload_dir, attachment) if attachment is not None else None
        try:
            message = run_mutation(
                request,
                "send_message",
                lambda: service.send_message(caller, conversation_id, body, stored),
            )
        except WeGetChatError:
            discard_upload(upload_dir, stored)
            raise
        return MessageResponse(message=message)

    @app.post(
        "/api/conversations/{conversation_id}/read",
        response_model=OkResponse,
        responses=error_responses,
    )
    async def mark_conversation_read(
        conversation_id: str, request: Request, caller: CallerDep, service: ServiceDep
    ) -> OkResponse:
        run_mutation(
            request,
            "mark_conversation_read",
            lambda: service.mark_conversation_read(caller, conversation_id),
        )
        return OkResponse()

    # =========================================================================
    # Notification Routes
    # =========================================================================

    @app.get("/api/notifications", response_model=NotificationsResponse)
    async def list_notifications(caller: CallerDep, service: ServiceDep) -> NotificationsResponse:
        return NotificationsResponse(
            notifications=[
                NotificationView.from_notification(n)
                for n in service.list_notifications(caller, settings.NOTIFICATION_PAGE_SIZE)
            ]
        )

    @app.post("/api/notifications/read-all", response_model=OkResponse)
    async def mark_all_notifications_read(
        request: Request, caller: CallerDep, service: ServiceDep
    ) -> OkResponse:
        run_mutation(
            request,
            "mark_all_notifications_read",
            lambda: service.mark_all_notifications_read(caller),
        )
        return OkResponse()

    # =========================================================================
    # Metrics Route
    # =========================================================================

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(content=get_metrics(), media_type=get_metrics_content_type())

    return app
