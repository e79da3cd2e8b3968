"""
API request and response models for the account service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field rules (non-empty name, '@' in email, password byte limit) live in
auth/credentials.py so the CLI and the API enforce the same policy. The models
here only bound sizes so oversized bodies are rejected before any hashing.

No response model has a password hash or reset token field.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import UserRecord

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/users/signup."""

    name: str = Field(max_length=255)
    email: str = Field(max_length=320)
    password: str = Field(max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login."""

    email: str = Field(max_length=320)
    password: str = Field(max_length=255)


class SettingsUpdate(BaseModel):
    """Request body for PUT /api/v1/users/me. Omitted or empty fields are unchanged."""

    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=255)


class ReminderRequest(BaseModel):
    """Request body for POST /api/v1/users/reminder."""

    name: str = Field(max_length=255)
    email: str = Field(max_length=320)


class NewPasswordRequest(BaseModel):
    """Request body for POST /api/v1/users/reset."""

    password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: UserRecord) -> "UserResponse":
        """Build a UserResponse from a domain UserRecord, dropping credential fields."""
        return cls(
            id=record.id,
            name=record.name,
            email=record.email,
            created_at=record.created_at.isoformat() if record.created_at else None,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
