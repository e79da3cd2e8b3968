"""
api/routes/v1/users.py -- Account REST endpoints.

Routes:
  POST /api/v1/users/signup                 -- register; welcome mail; starts session
  POST /api/v1/users/login                  -- password login; starts session
  POST /api/v1/users/logout                 -- clears session
  GET  /api/v1/users/me                     -- current account (requires session)
  PUT  /api/v1/users/me                     -- update name/email/password (requires session)
  POST /api/v1/users/reminder               -- (name, email) -> issue reset token, send link
  GET  /api/v1/users/reset/{email}/{token}  -- consume reset token; starts session
  POST /api/v1/users/reset                  -- set a new password (requires session)

Each handler makes one core call (plus fire-and-forget mail) and lets
AccountError propagate; api/main.py maps the error kind to a status code.
Handlers are plain `def` so bcrypt work runs in the thread pool, not on the
event loop.

Security:
  [H2] POST /login and POST /reminder are rate-limited per IP.
  [C1] CredentialManager.authenticate() equalizes timing -- never inline a
       lookup + verify_password() here.
  [M5] Cache-Control: no-store on responses that start a session.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, reminder_limit
from api.models import (
    LoginRequest,
    MessageResponse,
    NewPasswordRequest,
    ReminderRequest,
    SettingsUpdate,
    SignupRequest,
    UserResponse,
)
from auth.credentials import CredentialManager
from auth.dependencies import end_session, get_current_user, start_session
from auth.models import UserRecord
from auth.reset import ResetTokenManager
from mail.mailer import send_quietly

# Auth policy:
# - POST /users/signup, /login, /logout, /reminder, GET /reset/{email}/{token}: public
# - GET/PUT /users/me, POST /users/reset: require a session (get_current_user)
router = APIRouter()


def _session_response(record: UserRecord, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=UserResponse.from_record(record).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/signup", response_model=UserResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account, send the welcome mail and log the new user in."""
    credentials: CredentialManager = request.app.state.credentials
    record = credentials.register(body.name, body.email, body.password)
    send_quietly(request.app.state.mailer, "welcome", record)
    start_session(request, record)
    return _session_response(record, status_code=201)


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/users/login", response_model=UserResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and start a session.

    Unknown email and wrong password produce the same 401 body.
    """
    credentials: CredentialManager = request.app.state.credentials
    record = credentials.authenticate(body.email, body.password)
    start_session(request, record)
    return _session_response(record)


@router.post("/users/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    end_session(request)
    return MessageResponse(message="Logged out.")


@limiter.limit(reminder_limit)  # [H2]
@router.post("/users/reminder", response_model=MessageResponse)
def reminder(request: Request, body: ReminderRequest) -> MessageResponse:
    """Issue a reset token for the (name, email) account and mail the link.

    The token itself is only ever delivered by mail, never in the response.
    """
    resets: ResetTokenManager = request.app.state.resets
    record = resets.request_by_identity(body.name, body.email)
    record = resets.issue_token(record)
    send_quietly(request.app.state.mailer, "password_reset", record)
    return MessageResponse(message="A password reset link has been sent.")


@router.get("/users/reset/{email}/{token}", response_model=UserResponse)
def consume_reset(request: Request, email: str, token: str) -> JSONResponse:
    """Consume a reset token from the mailed link and log the user in.

    The token is rotated whether it was accepted or expired, so the link
    works at most once.
    """
    resets: ResetTokenManager = request.app.state.resets
    record = resets.consume_and_rotate(email, token)
    start_session(request, record)
    return _session_response(record)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/users/me", response_model=UserResponse)
def me(current_user: UserRecord = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_record(current_user)


@router.put("/users/me", response_model=UserResponse)
def update_me(
    request: Request,
    body: SettingsUpdate,
    current_user: UserRecord = Depends(get_current_user),
) -> UserResponse:
    """Update name, email and/or password. Omitted or empty fields are kept."""
    credentials: CredentialManager = request.app.state.credentials
    record = credentials.update_settings(current_user.id, name=body.name, email=body.email, password=body.password)
    return UserResponse.from_record(record)


@router.post("/users/reset", response_model=UserResponse)
def set_new_password(
    request: Request,
    body: NewPasswordRequest,
    current_user: UserRecord = Depends(get_current_user),
) -> UserResponse:
    """Set a new password for the session user (the step after consume_reset)."""
    credentials: CredentialManager = request.app.state.credentials
    record = credentials.set_password(current_user, body.password)
    return UserResponse.from_record(record)
