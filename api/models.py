"""
API request and response models for the admin auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every response, success or failure, is wrapped in the same Envelope:
    {"message": str, "data": object, "error": any, "status": bool}
"""

from typing import Any, Callable, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)

from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TOKEN_TYPE = "Bearer"  # noqa: S105 -- OAuth token type, not a password

EMAIL_INVALID = "The email must be a valid email address."
EMAIL_TAKEN = "The email has already been taken."
PASSWORD_TOO_LONG = f"The password may not be longer than {MAX_PASSWORD_BYTES} bytes."

# Validation context key for RegisterRequest: a callable(email) -> bool that
# reports whether an admin already uses the address.
EMAIL_EXISTS_CONTEXT = "email_exists"


def _check_email(value: Any, handler: ValidatorFunctionWrapHandler) -> str:
    """Run EmailStr validation, replacing pydantic's message with ours."""
    try:
        return handler(value)
    except ValidationError as exc:
        raise ValueError(EMAIL_INVALID) from exc


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/admin/login."""

    email: EmailStr = Field(max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email", mode="wrap")
    @classmethod
    def email_format(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> str:
        return _check_email(value, handler)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/admin/register.

    Uniqueness of email needs the store. The route validates with
    context={EMAIL_EXISTS_CONTEXT: store.email_exists} so a taken address is
    reported together with every other failing field.
    """

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr = Field(max_length=255)
    password: str = Field(min_length=6, max_length=255)
    password_confirmation: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("email", mode="wrap")
    @classmethod
    def email_format_and_unique(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> str:
        email = _check_email(value, handler)
        email_exists: Optional[Callable[[str], bool]] = (info.context or {}).get(EMAIL_EXISTS_CONTEXT)
        if email_exists is not None and email_exists(email):
            raise ValueError(EMAIL_TAKEN)
        return email

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(PASSWORD_TOO_LONG)
        return value

    @field_validator("password_confirmation")
    @classmethod
    def passwords_match(cls, value: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Runs after password (field order), so info.data holds it when it passed validation."""
        password = info.data.get("password")
        if password is not None and value != password:
            raise ValueError("The password confirmation does not match.")
        return value


# ---------------------------------------------------------------------------
# Response payloads
# ---------------------------------------------------------------------------


class AdminResponse(BaseModel):
    """Public view of an admin. The password hash is never serialized."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    created_at: str
    updated_at: str


class TokenData(BaseModel):
    """data payload for login and refresh."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token: str = Field(serialization_alias="_token")
    token_type: str = TOKEN_TYPE
    expires_in: int


class RegisterData(TokenData):
    """data payload for register: the new admin plus its first token."""

    admin: AdminResponse


class Envelope(BaseModel):
    """Uniform response envelope for every endpoint."""

    model_config = ConfigDict(frozen=True)

    message: str = ""
    data: Any = Field(default_factory=dict)
    error: Any = ""
    status: bool


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
