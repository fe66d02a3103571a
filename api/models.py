"""
API request and response models for TradeAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

The wire format is camelCase (accessToken, currentPassword, ...) because
that is what the existing frontend sends and reads. Fields are declared in
snake_case and aliased with to_camel; populate_by_name lets tests and
internal callers use either spelling.

Signup fields are Optional on purpose: a missing field must reach the
service and come back as the 400 "Missing required fields" error, not as a
generic 422 from request validation.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import User, VerifyReport


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(_CamelModel):
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    country: Optional[str] = Field(default=None, max_length=100)
    password: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(_CamelModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class UpdateProfileRequest(_CamelModel):
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class ChangePasswordRequest(_CamelModel):
    current_password: Optional[str] = Field(default=None, max_length=255)
    new_password: Optional[str] = Field(default=None, max_length=255)


class DevHashRequest(_CamelModel):
    password: Optional[str] = None


class DevCredentialRequest(_CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(_CamelModel):
    message: str


class TokenResponse(_CamelModel):
    """Body of login and refresh. The refresh id travels in a cookie, never here."""

    access_token: str
    role: str


class ProfileResponse(_CamelModel):
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    country: Optional[str] = None
    role: str

    @classmethod
    def from_user(cls, user: User) -> "ProfileResponse":
        return cls(user_id=user.id, email=user.email, name=user.name, country=user.country, role=user.role)


class ProfileUpdateResponse(_CamelModel):
    updated: int
    profile: ProfileResponse


class PasswordChangeResponse(_CamelModel):
    updated: int
    message: Optional[str] = None


class DevHashResponse(_CamelModel):
    hash: str


class DevResetResponse(_CamelModel):
    updated: int


class DevVerifyResponse(_CamelModel):
    matched: bool
    mode: str
    algorithm: Optional[str] = None
    hash_prefix: Optional[str] = None
    hash_length: int = 0
    not_found: bool = False

    @classmethod
    def from_report(cls, report: VerifyReport) -> "DevVerifyResponse":
        return cls(
            matched=report.matched,
            mode=report.mode,
            algorithm=report.algorithm,
            hash_prefix=report.hash_prefix,
            hash_length=report.hash_length,
            not_found=report.not_found,
        )


class PurgeResponse(_CamelModel):
    purged: int


class ErrorDetail(BaseModel):
    """Inner error object -- the value of ErrorResponse.error."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error envelope returned by every non-2xx response."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
