"""
api/routes/users.py
-------------------
User endpoints: authentication, self-service account flows and
owner/admin user management.

Fixed paths are declared before /users/{user_id} so they are never
captured by the id route.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Query, status

from dealerdesk.core.config import settings
from dealerdesk.core.errors import AuthenticationError
from dealerdesk.core.security import create_access_token
from dealerdesk.dependencies import CurrentScope, CurrentUser, DbSession, OptionalScope
from dealerdesk.schemas.common import ApiResponse, Page, PublicPageResponse
from dealerdesk.schemas.user import (
    BecomeOwnerRequest,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LoginResponse,
    ProfileUpdate,
    ResetPasswordRequest,
    UserCreate,
    UserRead,
    UserRegister,
    UserUpdate,
)
from dealerdesk.services.scoping import Pagination, parse_id
from dealerdesk.services.user_service import UserFilters, UserService

router = APIRouter(prefix="/users", tags=["Users"])


# ── Authentication ────────────────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=ApiResponse[UserRead],
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user account",
)
async def register(body: UserRegister, db: DbSession) -> ApiResponse[UserRead]:
    """Self-registration always creates an active account with role 'user'."""
    user = await UserService.register(db, body)
    return ApiResponse(message="User registered", data=await UserService.hydrate(db, user))


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Exchange credentials for an access token",
)
async def login(body: LoginRequest, db: DbSession) -> LoginResponse:
    user = await UserService.authenticate(db, body.email, body.password)
    if user is None:
        raise AuthenticationError("Invalid credentials.")

    token = create_access_token(user_id=user.id, email=user.email, role=user.role)
    return LoginResponse(token=token, user=await UserService.hydrate(db, user))


@router.get(
    "/get-valid-user",
    response_model=ApiResponse[UserRead],
    summary="Return the authenticated user's profile",
)
async def get_valid_user(user: CurrentUser, db: DbSession) -> ApiResponse[UserRead]:
    return ApiResponse(data=await UserService.hydrate(db, user))


# ── Self-service ──────────────────────────────────────────────────────────────

@router.post(
    "/become-owner",
    response_model=ApiResponse[UserRead],
    summary="Upgrade the caller to an owner account",
)
async def become_owner(
    user: CurrentUser,
    db: DbSession,
    body: Optional[BecomeOwnerRequest] = None,
) -> ApiResponse[UserRead]:
    user = await UserService.become_owner(db, user, body or BecomeOwnerRequest())
    return ApiResponse(message="Owner profile created", data=await UserService.hydrate(db, user))


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    summary="Issue a password reset token",
)
async def forgot_password(body: ForgotPasswordRequest, db: DbSession) -> ForgotPasswordResponse:
    """
    No email is sent. Outside production the raw token is returned as
    `devResetToken` so the flow can be completed by hand.
    """
    raw_token = await UserService.forgot_password(db, body.email)
    return ForgotPasswordResponse(
        message="If the account exists, we have sent password reset instructions.",
        dev_reset_token=None if settings.is_production else raw_token,
        email_sent=False,
    )


@router.post(
    "/reset-password",
    response_model=ApiResponse[None],
    summary="Set a new password with a reset token",
)
async def reset_password(body: ResetPasswordRequest, db: DbSession) -> ApiResponse[None]:
    await UserService.reset_password(db, body.token, body.password)
    return ApiResponse(message="Password has been reset successfully.")


@router.api_route(
    "/profile",
    methods=["PATCH", "PUT"],
    response_model=ApiResponse[UserRead],
    summary="Update the caller's profile and account settings",
)
async def update_profile(
    body: ProfileUpdate,
    user: CurrentUser,
    scope: CurrentScope,
    db: DbSession,
) -> ApiResponse[UserRead]:
    user = await UserService.update_profile(db, scope, user, body)
    return ApiResponse(message="Profile updated", data=await UserService.hydrate(db, user))


# ── Listing ───────────────────────────────────────────────────────────────────

@router.get(
    "/public",
    response_model=PublicPageResponse[UserRead],
    summary="List users without requiring a credential",
)
async def list_public_users(
    db: DbSession,
    scope: OptionalScope,
    owner: Annotated[Optional[str], Query()] = None,
    q: Annotated[Optional[str], Query()] = None,
    role: Annotated[Optional[str], Query()] = None,
    status_: Annotated[Optional[str], Query(alias="status")] = None,
    branch: Annotated[Optional[str], Query()] = None,
    limit: Annotated[Optional[str], Query()] = None,
    page: Annotated[Optional[str], Query()] = None,
) -> PublicPageResponse[UserRead]:
    total, items = await UserService.list_public_users(
        db,
        scope,
        UserFilters(q=q, role=role, status=status_, branch_id=parse_id(branch)),
        Pagination.from_params(limit, page),
        explicit_tenant_id=parse_id(owner),
    )
    return PublicPageResponse(data=Page(items=items, total=total))


@router.get(
    "",
    response_model=ApiResponse[Page[UserRead]],
    summary="Owner/admin: list users",
)
async def list_users(
    db: DbSession,
    scope: CurrentScope,
    owner: Annotated[Optional[str], Query()] = None,
    q: Annotated[Optional[str], Query()] = None,
    role: Annotated[Optional[str], Query()] = None,
    status_: Annotated[Optional[str], Query(alias="status")] = None,
    branch: Annotated[Optional[str], Query()] = None,
    limit: Annotated[Optional[str], Query()] = None,
    page: Annotated[Optional[str], Query()] = None,
) -> ApiResponse[Page[UserRead]]:
    total, items = await UserService.list_users(
        db,
        scope,
        UserFilters(q=q, role=role, status=status_, branch_id=parse_id(branch)),
        Pagination.from_params(limit, page),
        tenant_filter=parse_id(owner),
    )
    return ApiResponse(data=Page(items=items, total=total))


# ── Management ────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=ApiResponse[UserRead],
    summary="Get one user",
)
async def get_user(user_id: int, db: DbSession, scope: CurrentScope) -> ApiResponse[UserRead]:
    user = await UserService.read_user(db, scope, user_id)
    return ApiResponse(data=await UserService.hydrate(db, user))


@router.post(
    "",
    response_model=ApiResponse[UserRead],
    status_code=status.HTTP_201_CREATED,
    summary="Owner/admin: create a user",
)
async def create_user(body: UserCreate, db: DbSession, scope: CurrentScope) -> ApiResponse[UserRead]:
    user = await UserService.create_user(db, scope, body)
    return ApiResponse(message="User created", data=await UserService.hydrate(db, user))


@router.put(
    "/{user_id}",
    response_model=ApiResponse[UserRead],
    summary="Owner/admin: update a user",
)
async def update_user(
    user_id: int,
    body: UserUpdate,
    db: DbSession,
    scope: CurrentScope,
) -> ApiResponse[UserRead]:
    user = await UserService.update_user(db, scope, user_id, body)
    return ApiResponse(message="User updated", data=await UserService.hydrate(db, user))


@router.delete(
    "/{user_id}",
    response_model=ApiResponse[None],
    summary="Owner/admin: delete a user",
)
async def delete_user(user_id: int, db: DbSession, scope: CurrentScope) -> ApiResponse[None]:
    await UserService.delete_user(db, scope, user_id)
    return ApiResponse(message="User deleted")
