"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

The signed session cookie (Starlette SessionMiddleware) carries only the
account id under "user_id". Routes write it after a successful signup, login
or reset-token consumption and clear it on logout. The core managers never
read or write the session.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/ or mail/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import UserRecord

SESSION_KEY = "user_id"


def try_get_current_user(request: Request) -> UserRecord | None:
    """Return the account bound to the session, or None.

    A session pointing at an id that no longer exists is cleared so the stale
    cookie is not re-sent forever.
    """
    user_id = request.session.get(SESSION_KEY)
    if user_id is None:
        return None
    record = request.app.state.user_store.find_by_id(user_id)
    if record is None:
        request.session.pop(SESSION_KEY, None)
    return record


def get_current_user(request: Request) -> UserRecord:
    """Require a logged-in session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: UserRecord = Depends(get_current_user)): ...
    """
    record = try_get_current_user(request)
    if record is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Please login to access this page."},
        )
    return record


def start_session(request: Request, record: UserRecord) -> None:
    """Bind the session to record, discarding anything from a previous login."""
    request.session.clear()
    request.session[SESSION_KEY] = record.id


def end_session(request: Request) -> None:
    request.session.clear()
