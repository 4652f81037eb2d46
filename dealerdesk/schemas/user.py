"""
schemas/user.py
---------------
Pydantic models for User registration, login, management and responses.

Security note:
  - password, reset_token and reset_expires_at are NEVER included in any
    response schema; public and authenticated listings share UserRead.
  - Required-field checks raise ValueError with the message shown to the
    client (main.py strips pydantic's "Value error, " prefix).
"""

from typing import Any, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.networks import validate_email
from pydantic_core import PydanticCustomError

from dealerdesk.core.config import settings
from dealerdesk.models.user import UserRole, UserStatus
from dealerdesk.schemas.branch import BranchRead
from dealerdesk.schemas.tenant import TenantSummary


def normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def _check_email_format(email: str) -> None:
    try:
        validate_email(email)
    except PydanticCustomError as exc:
        raise ValueError("A valid email address is required.") from exc


def _optional_text(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def _optional_id(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return value


# ── Auth ──────────────────────────────────────────────────────────────────────

class UserRegister(BaseModel):
    """Self-registration: always creates a 'user'-role account."""

    name: str = ""
    email: str = ""
    phone: Optional[str] = None
    password: str = ""

    _strip_name = field_validator("name", mode="before")(lambda v: str(v or "").strip())
    _email = field_validator("email", mode="before")(normalize_email)
    _phone = field_validator("phone", mode="before")(_optional_text)

    @model_validator(mode="after")
    def _check_required(self) -> "UserRegister":
        if not self.name or not self.email or len(self.password) < settings.MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"Name, email and password (min {settings.MIN_PASSWORD_LENGTH} chars) are required."
            )
        _check_email_format(self.email)
        return self


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""

    _email = field_validator("email", mode="before")(normalize_email)

    @model_validator(mode="after")
    def _check_required(self) -> "LoginRequest":
        if not self.email or not self.password:
            raise ValueError("Email and password are required.")
        return self


class ForgotPasswordRequest(BaseModel):
    email: str = ""

    _email = field_validator("email", mode="before")(normalize_email)

    @model_validator(mode="after")
    def _check_required(self) -> "ForgotPasswordRequest":
        if not self.email:
            raise ValueError("Email is required.")
        return self


class ResetPasswordRequest(BaseModel):
    token: str = ""
    password: str = ""

    _token = field_validator("token", mode="before")(lambda v: str(v or "").strip())

    @model_validator(mode="after")
    def _check_required(self) -> "ResetPasswordRequest":
        if not self.token or len(self.password) < settings.MIN_PASSWORD_LENGTH:
            raise ValueError("Token and new password are required.")
        return self


# ── Management ────────────────────────────────────────────────────────────────

class _BranchAssignment(BaseModel):
    """Branch and tenant fields shared by create and update bodies."""

    model_config = ConfigDict(populate_by_name=True)

    primary_branch: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("primaryBranch", "primary_branch")
    )
    branches: List[int] = Field(default_factory=list)
    branch_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("branchId", "branch_id")
    )
    tenant_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("ownerId", "tenantId", "tenant_id")
    )
    max_branches: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("maxBranches", "max_branches")
    )

    _ids = field_validator(
        "primary_branch", "branch_id", "tenant_id", "max_branches", mode="before"
    )(_optional_id)

    @field_validator("branches", mode="before")
    @classmethod
    def _branch_list(cls, v: Any) -> List[Any]:
        if not v:
            return []
        if not isinstance(v, (list, tuple)):
            v = [v]
        return [item for item in v if _optional_id(item) is not None]

    def requested_branch_id(self) -> Optional[int]:
        """primaryBranch wins over branches[0], which wins over branchId."""
        if self.primary_branch:
            return self.primary_branch
        if self.branches:
            return self.branches[0]
        return self.branch_id or None


class UserCreate(_BranchAssignment):
    """Admin/owner-initiated user creation."""

    name: str = ""
    email: str = ""
    phone: Optional[str] = None
    password: str = ""
    role: UserRole = UserRole.user
    status: UserStatus = UserStatus.active

    _strip_name = field_validator("name", mode="before")(lambda v: str(v or "").strip())
    _email = field_validator("email", mode="before")(normalize_email)
    _phone = field_validator("phone", mode="before")(_optional_text)
    _role = field_validator("role", mode="before")(lambda v: UserRole.normalize(v))
    _status = field_validator("status", mode="before")(lambda v: UserStatus.normalize(v))

    @model_validator(mode="after")
    def _check_required(self) -> "UserCreate":
        if not self.name or not self.email or len(self.password) < settings.MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"name, email and password (min {settings.MIN_PASSWORD_LENGTH} chars) are required"
            )
        _check_email_format(self.email)
        return self


class UserUpdate(_BranchAssignment):
    """Partial update; use `model_fields_set` to tell "absent" from "cleared"."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None

    _name = field_validator("name", mode="before")(_optional_text)
    _phone = field_validator("phone", mode="before")(_optional_text)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Optional[str]:
        return normalize_email(v) or None

    @field_validator("password", mode="before")
    @classmethod
    def _password(cls, v: Any) -> Optional[str]:
        return str(v) if v else None

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v: Any) -> Optional[UserRole]:
        return UserRole.normalize(v) if v else None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> Optional[UserStatus]:
        return UserStatus.normalize(v) if v else None

    @model_validator(mode="after")
    def _check_values(self) -> "UserUpdate":
        if self.email is not None:
            _check_email_format(self.email)
        if self.password is not None and len(self.password) < settings.MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"password must be at least {settings.MIN_PASSWORD_LENGTH} characters"
            )
        return self


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    web_app_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("webAppUrl", "web_app_url")
    )
    logo_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("logoUrl", "logo_url")
    )
    max_branches: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("maxBranches", "max_branches")
    )
    tenant_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("ownerId", "tenantId", "tenant_id")
    )

    _text = field_validator("name", "phone", "web_app_url", "logo_url", mode="before")(
        _optional_text
    )
    _ids = field_validator("max_branches", "tenant_id", mode="before")(_optional_id)


class BecomeOwnerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    web_app_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("webAppUrl", "web_app_url")
    )
    logo_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("logoUrl", "logo_url")
    )
    max_branches: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("maxBranches", "max_branches")
    )

    _text = field_validator("web_app_url", "logo_url", mode="before")(_optional_text)
    _ids = field_validator("max_branches", mode="before")(_optional_id)


# ── Responses ─────────────────────────────────────────────────────────────────

class FormDefaults(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    staff_name: str = Field(default="", alias="staffName")
    branch_id: Optional[int] = Field(default=None, alias="branchId")
    branch_name: str = Field(default="", alias="branchName")
    branch_code: str = Field(default="", alias="branchCode")


class UserRead(BaseModel):
    """Hydrated user: never carries credential material."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    email: str
    phone: str = ""
    role: str
    status: str
    tenant_id: Optional[int] = Field(default=None, alias="ownerId")
    branch_id: Optional[int] = Field(default=None, alias="branchId")
    tenant: Optional[TenantSummary] = Field(default=None, alias="owner")
    primary_branch: Optional[BranchRead] = Field(default=None, alias="primaryBranch")
    branches: List[BranchRead] = Field(default_factory=list)
    form_defaults: FormDefaults = Field(default_factory=FormDefaults, alias="formDefaults")


class LoginResponse(BaseModel):
    success: bool = True
    message: str = "Logged in"
    token: str
    user: UserRead


class ForgotPasswordResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    dev_reset_token: Optional[str] = Field(default=None, alias="devResetToken")
    email_sent: bool = Field(default=False, alias="emailSent")
