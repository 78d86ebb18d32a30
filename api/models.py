"""
API request and response models for Warden REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are separate from the dataclasses in auth/models.py and
rbac/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: domain models = internal truth; api/ models = API contract.
"""

import re
from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# At least one letter and one digit; bcrypt only reads the first 72 bytes.
_PASSWORD_RE = re.compile(r"^(?=.*[A-Za-z])(?=.*\d).{8,72}$")

# Resource/action identifiers are stored and matched verbatim.
_IDENTIFIER_PATTERN = r"^[a-z][a-z0-9_]*$"


def _check_password(value: str) -> str:
    if not _PASSWORD_RE.match(value):
        raise ValueError("Password must be 8-72 characters and contain at least one letter and one digit.")
    return value


Password = Annotated[str, AfterValidator(_check_password)]


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class LoginRequest(_EmailBody):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=1, max_length=128)


class RegisterRequest(_EmailBody):
    """Request body for POST /api/v1/auth/register."""

    password: Password
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class ForgotPasswordRequest(_EmailBody):
    """Request body for POST /api/v1/auth/forgot-password and resend-verification."""


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: Password


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: Password


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Response for login and refresh. The raw refresh token is shown here only."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_verified: bool
    roles: list[str]
    permissions: list[str]


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    email: str


class SessionRow(BaseModel):
    """One live refresh token (signed-in device) of the current account."""

    model_config = ConfigDict(frozen=True)

    id: int
    device_info: Optional[str]
    ip_address: Optional[str]
    created_at: Optional[datetime]
    expires_at: datetime


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Permission graph -- request models
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100, pattern=_IDENTIFIER_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)


class RolePatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=100, pattern=_IDENTIFIER_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)


class PermissionCreate(BaseModel):
    """Request body for POST /api/v1/permissions."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100, pattern=_IDENTIFIER_PATTERN)
    resource: str = Field(min_length=1, max_length=100, pattern=_IDENTIFIER_PATTERN)
    action: str = Field(min_length=1, max_length=50, pattern=_IDENTIFIER_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)


class PermissionPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=100, pattern=_IDENTIFIER_PATTERN)
    resource: Optional[str] = Field(default=None, min_length=1, max_length=100, pattern=_IDENTIFIER_PATTERN)
    action: Optional[str] = Field(default=None, min_length=1, max_length=50, pattern=_IDENTIFIER_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)


class RoleGrantRequest(BaseModel):
    """Request body for POST /api/v1/grants/role and /grants/role/revoke."""

    account_id: int = Field(gt=0)
    role_id: int = Field(gt=0)
    expires_at: Optional[datetime] = None


class EdgeGrantRequest(BaseModel):
    """Request body for POST /api/v1/grants/permission and /grants/permission/revoke."""

    account_id: int = Field(gt=0)
    role_id: int = Field(gt=0)
    permission_id: int = Field(gt=0)
    expires_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Permission graph -- response models
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    created_at: Optional[datetime]


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    resource: str
    action: str
    description: Optional[str]
    created_at: Optional[datetime]


class RoleDetailResponse(RoleResponse):
    permissions: list[PermissionResponse] = Field(default_factory=list)


class GrantResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    grant_id: int
    role_permission_id: int
    role_name: str
    permission_name: str
    resource: str
    action: str
    granted_by: Optional[int]
    granted_at: Optional[datetime]
    expires_at: Optional[datetime]
    state: str


class AccountPermissionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    roles: list[str]
    permissions: list[str]
    grants: list[GrantResponse]


class PermissionCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    resource: str
    action: str
    allowed: bool


class CreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


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
