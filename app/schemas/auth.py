"""Pydantic schemas for authentication endpoints."""

from datetime import datetime
from typing import Annotated, Generic, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$"
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"

DataT = TypeVar("DataT")


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys, matching the browser client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=30, pattern=USERNAME_PATTERN)]
Email = Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, max_length=256, pattern=EMAIL_PATTERN)]


# --- Requests ---


class RegisterRequest(CamelModel):
    username: Username
    email: Email
    password: str


class LoginRequest(CamelModel):
    username: str = Field(min_length=1, description="Username or email")
    password: str = Field(min_length=1)
    two_factor_code: str | None = None


class PasswordStrengthRequest(CamelModel):
    password: str | None = None


class TwoFactorVerifyRequest(CamelModel):
    code: str | None = Field(default=None, validation_alias=AliasChoices("code", "token"))


class TwoFactorDisableRequest(CamelModel):
    password: str | None = None


class ForgotPasswordRequest(CamelModel):
    email: str


class ResetPasswordRequest(CamelModel):
    token: str
    new_password: str


# --- Responses ---


class ApiResponse(CamelModel, Generic[DataT]):
    """Envelope shared by every endpoint."""

    success: bool = True
    message: str | None = None
    data: DataT | None = None


class UserResponse(CamelModel):
    id: int
    username: str
    email: str
    is_email_verified: bool
    two_factor_enabled: bool
    last_activity: datetime | None = None
    created_at: datetime | None = None


class AuthData(CamelModel):
    user: UserResponse
    token: str


class LoginResponse(ApiResponse[AuthData]):
    requires_two_factor: bool | None = None
    user_id: int | None = None


class ProfileData(CamelModel):
    user: UserResponse


class SessionData(CamelModel):
    authenticated: bool
    user: UserResponse | None = None


class PasswordCriteriaResponse(CamelModel):
    min_length: bool
    has_lowercase: bool
    has_uppercase: bool
    has_number: bool
    has_special_char: bool


class PasswordStrengthResponse(CamelModel):
    is_valid: bool
    score: int
    criteria: PasswordCriteriaResponse
    strength: str


class TwoFactorSetupResponse(CamelModel):
    secret: str
    qr_code: str
    manual_entry_key: str


class HealthData(CamelModel):
    timestamp: datetime
    storage: str
