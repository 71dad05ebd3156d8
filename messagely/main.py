import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, Request, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from messagely import messages as message_exchange
from messagely import users as user_directory
from messagely.config import settings
from messagely.errors import ApiError, ApiErrorCode, ForbiddenError, UnauthorizedError
from messagely.storage import init_db, check_db_health, get_db
from messagely.logging_utils import setup_logging, RequestLoggingMiddleware, attach_log_data
from messagely.metrics import (
    record_auth_outcome,
    record_message_event,
    get_metrics,
    get_metrics_content_type,
)
from messagely.security import create_access_token, get_current_username
from messagely.schemas import (
    HealthResponse,
    ErrorResponse,
    RegisterRequest,
    LoginRequest,
    TokenResponse,
    UsersListResponse,
    UserDetailResponse,
    SentMessagesResponse,
    ReceivedMessagesResponse,
    MessageCreateRequest,
    MessageCreatedResponse,
    MessageDetailResponse,
    MessageReadResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Messagely API",
    description="Authenticated direct messaging between registered users",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Serialize domain errors as {detail, code} with the mapped status."""
    attach_log_data(request, error_code=exc.code.value)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code.value},
    )


ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing or invalid token"},
    403: {"model": ErrorResponse, "description": "Not allowed for this user"},
    404: {"model": ErrorResponse, "description": "User or message not found"},
}


def ensure_correct_user(username: str, current_username: str) -> None:
    """Routes scoped to one user are only open to that user."""
    if username != current_username:
        raise ForbiddenError(message="Cannot access another user's data")


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. SECRET_KEY is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.SECRET_KEY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="SECRET_KEY not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Auth Routes
# =============================================================================

@app.post(
    "/auth/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Username taken"}},
)
def register(
    request: Request,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
) -> TokenResponse:
    """
    Register a new user and log them in.

    {username, password, first_name, last_name, phone} => {token}
    """
    attach_log_data(request, username=payload.username)
    try:
        user = user_directory.register(
            db,
            username=payload.username,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
        )
    except ApiError as e:
        if e.code == ApiErrorCode.E_USERNAME_TAKEN:
            record_auth_outcome("conflict")
            attach_log_data(request, result="conflict")
        raise

    record_auth_outcome("registered")
    attach_log_data(request, result="registered")
    return TokenResponse(token=create_access_token(user.username))


@app.post(
    "/auth/login",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
)
def login(
    request: Request,
    payload: LoginRequest,
    db: Session = Depends(get_db),
) -> TokenResponse:
    """
    Check credentials, stamp last_login_at and return a token.

    {username, password} => {token}
    """
    attach_log_data(request, username=payload.username)

    if not user_directory.authenticate(db, payload.username, payload.password):
        record_auth_outcome("invalid_credentials")
        attach_log_data(request, result="invalid_credentials")
        raise UnauthorizedError(
            code=ApiErrorCode.E_INVALID_CREDENTIALS,
            message="Invalid username/password",
        )

    user_directory.update_login_timestamp(db, payload.username)
    record_auth_outcome("success")
    attach_log_data(request, result="success")
    return TokenResponse(token=create_access_token(payload.username))


# =============================================================================
# User Routes
# =============================================================================

@app.get("/users", response_model=UsersListResponse, responses=ERROR_RESPONSES)
def list_users(
    db: Session = Depends(get_db),
    current_username: str = Depends(get_current_username),
) -> UsersListResponse:
    """=> {users: [{username, first_name, last_name, phone}, ...]}"""
    users = user_directory.all_users(db)
    logger.info(f"GET /users: returned {len(users)} users")
    return UsersListResponse.model_validate({"users": users}, from_attributes=True)


@app.get("/users/{username}", response_model=UserDetailResponse, responses=ERROR_RESPONSES)
def get_user_detail(
    username: str,
    db: Session = Depends(get_db),
    current_username: str = Depends(get_current_username),
) -> UserDetailResponse:
    """=> {user: {username, first_name, last_name, phone, join_at, last_login_at}}"""
    ensure_correct_user(username, current_username)
    user = user_directory.get_user(db, username)
    return UserDetailResponse.model_validate({"user": user}, from_attributes=True)


@app.get("/users/{username}/from", response_model=SentMessagesResponse, responses=ERROR_RESPONSES)
def get_messages_from(
    username: str,
    db: Session = Depends(get_db),
    current_username: str = Depends(get_current_username),
) -> SentMessagesResponse:
    """=> {messages: [{id, to_user, body, sent_at, read_at}, ...]}"""
    ensure_correct_user(username, current_username)
    sent = user_directory.messages_from(db, username)
    logger.info(f"GET /users/{username}/from: returned {len(sent)} messages")
    return SentMessagesResponse.model_validate({"messages": sent}, from_attributes=True)


@app.get("/users/{username}/to", response_model=ReceivedMessagesResponse, responses=ERROR_RESPONSES)
def get_messages_to(
    username: str,
    db: Session = Depends(get_db),
    current_username: str = Depends(get_current_username),
) -> ReceivedMessagesResponse:
    """=> {messages: [{id, from_user, body, sent_at, read_at}, ...]}"""
    ensure_correct_user(username, current_username)
    received = user_directory.messages_to(db, username)
    logger.info(f"GET /users/{username}/to: returned {len(received)} messages")
    return ReceivedMessagesResponse.model_validate({"messages": received}, from_attributes=True)


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/messages/{message_id}", response_model=MessageDetailResponse, responses=ERROR_RESPONSES)
def get_message_detail(
    request: Request,
    message_id: int,
    db: Session = Depends(get_db),
    current_username: str = Depends(get_current_username),
) -> MessageDetailResponse:
    """
    => {message: {id, body, sent_at, read_at, from_user, to_user}}

    Only the sender or the recipient may read it.
    """
    attach_log_data(request, username=current_username, message_id=message_id)
    message = message_exchange.get_message(db, message_id)
    message_exchange.ensure_can_read(message, current_username)
    return MessageDetailResponse.model_validate({"message": message}, from_attributes=True)


@app.post(
    "/messages",
    response_model=MessageCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
def post_message(
    request: Request,
    payload: MessageCreateRequest,
    db: Session = Depends(get_db),
    current_username: str = Depends(get_current_username),
) -> MessageCreatedResponse:
    """
    {to_username, body} => {message: {id, from_username, to_username, body, sent_at, read_at}}

    The sender is always the authenticated user.
    """
    message = message_exchange.create_message(
        db,
        from_username=current_username,
        to_username=payload.to_username,
        body=payload.body,
    )
    record_message_event("created")
    attach_log_data(request, username=current_username, message_id=message.id)
    return MessageCreatedResponse.model_validate({"message": message}, from_attributes=True)


@app.post("/messages/{message_id}/read", response_model=MessageReadResponse, responses=ERROR_RESPONSES)
def read_message(
    request: Request,
    message_id: int,
    db: Session = Depends(get_db),
    current_username: str = Depends(get_current_username),
) -> MessageReadResponse:
    """
    => {message: {id, read_at}}

    Only the recipient may mark a message read.
    """
    attach_log_data(request, username=current_username, message_id=message_id)
    message = message_exchange.get_message(db, message_id)
    message_exchange.ensure_can_mark_read(message, current_username)

    message = message_exchange.mark_read(db, message_id)
    record_message_event("read")
    return MessageReadResponse.model_validate({"message": message}, from_attributes=True)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Includes http_requests_total, auth_attempts_total, messages_total and
    request_latency_seconds.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
