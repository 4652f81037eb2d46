"""
services/user_service.py
------------------------
Business logic for user registration, authentication, management and the
self-service account flows (profile, become-owner, password reset).

All listings are scoped through services/scoping.py and every mutation is
authorized through AuthorizationPolicy. Users are returned to routes as
hydrated UserRead models, which never carry credential material.
"""

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.config import settings
from dealerdesk.core.errors import BadRequestError, ConflictError, NotFoundError
from dealerdesk.core.logging import get_logger
from dealerdesk.core.security import (
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_password,
)
from dealerdesk.models.branch import Branch
from dealerdesk.models.tenant import Tenant
from dealerdesk.models.user import User, UserRole, UserStatus
from dealerdesk.schemas.branch import BranchRead
from dealerdesk.schemas.tenant import TenantSummary
from dealerdesk.schemas.user import (
    BecomeOwnerRequest,
    FormDefaults,
    ProfileUpdate,
    UserCreate,
    UserRead,
    UserRegister,
    UserUpdate,
)
from dealerdesk.services.authorization import AuthorizationPolicy, Operation, Resource
from dealerdesk.services.branch_service import BranchService
from dealerdesk.services.scoping import (
    Pagination,
    ScopeFilter,
    paginate,
    resolve_list_scope,
    search_clause,
)
from dealerdesk.services.tenant_resolver import TenantScope
from dealerdesk.services.tenant_service import TenantService

logger = get_logger(__name__)

EMAIL_TAKEN_MESSAGE = "Email is already registered."
PHONE_TAKEN_MESSAGE = "Phone is already registered."
BRANCH_ROLE_TAKEN_MESSAGE = "Branch already has this role assigned."
GENERIC_CONFLICT_MESSAGE = "Email or phone already exists."


@dataclass(frozen=True)
class UserFilters:
    q: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    branch_id: Optional[int] = None


class UserService:

    # ── Lookups ───────────────────────────────────────────────────────────────

    @staticmethod
    async def get_user(db: AsyncSession, user_id: int | None) -> User | None:
        if not user_id:
            return None
        return await db.get(User, user_id)

    @staticmethod
    async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    # ── Hydration ─────────────────────────────────────────────────────────────

    @staticmethod
    def to_read(user: User, tenant: Tenant | None, branch: Branch | None) -> UserRead:
        branch_read = BranchRead.from_model(branch) if branch is not None else None
        tenant_id = user.tenant_id or (tenant.id if tenant is not None else None)
        branch_id = user.branch_id or None
        return UserRead(
            id=user.id,
            name=user.name,
            email=user.email,
            phone=user.phone or "",
            role=user.role,
            status=user.status,
            tenant_id=tenant_id,
            branch_id=branch_id,
            tenant=TenantSummary.from_model(tenant) if tenant is not None else None,
            primary_branch=branch_read,
            branches=[branch_read] if branch_read is not None else [],
            form_defaults=FormDefaults(
                staff_name=user.name or "",
                branch_id=branch_id,
                branch_name=branch.name if branch is not None else "",
                branch_code=branch.code if branch is not None else "",
            ),
        )

    @classmethod
    async def hydrate_many(cls, db: AsyncSession, users: Sequence[User]) -> list[UserRead]:
        """Attach tenant and branch summaries to a page of users (two queries)."""
        if not users:
            return []
        tenants = await TenantService.get_tenants_for_users(db, users)
        branches = await BranchService.get_branches(db, (u.branch_id for u in users))
        return [
            cls.to_read(user, tenants.get(user.id), branches.get(user.branch_id))
            for user in users
        ]

    @classmethod
    async def hydrate(cls, db: AsyncSession, user: User) -> UserRead:
        return (await cls.hydrate_many(db, [user]))[0]

    # ── Uniqueness pre-checks ─────────────────────────────────────────────────

    @staticmethod
    async def _ensure_email_available(
        db: AsyncSession, email: str, exclude_id: int | None = None
    ) -> None:
        stmt = select(User.id).where(User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if (await db.execute(stmt.limit(1))).scalar_one_or_none() is not None:
            raise ConflictError(EMAIL_TAKEN_MESSAGE)

    @staticmethod
    async def _ensure_phone_available(
        db: AsyncSession, phone: str | None, exclude_id: int | None = None
    ) -> None:
        if not phone:
            return
        stmt = select(User.id).where(User.phone == phone)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if (await db.execute(stmt.limit(1))).scalar_one_or_none() is not None:
            raise ConflictError(PHONE_TAKEN_MESSAGE)

    @staticmethod
    async def _ensure_branch_role_available(
        db: AsyncSession, branch_id: int | None, role: UserRole, exclude_id: int | None = None
    ) -> None:
        if not branch_id or not role.is_branch_scoped:
            return
        stmt = select(User.id).where(User.branch_id == branch_id, User.role == role.value)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if (await db.execute(stmt.limit(1))).scalar_one_or_none() is not None:
            raise ConflictError(BRANCH_ROLE_TAKEN_MESSAGE)

    @staticmethod
    async def _flush_user(db: AsyncSession, user: User) -> None:
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            if "users_branch_role_unique" in str(exc.orig):
                raise ConflictError(BRANCH_ROLE_TAKEN_MESSAGE)
            raise ConflictError(GENERIC_CONFLICT_MESSAGE)
        await db.refresh(user)

    # ── Auth ──────────────────────────────────────────────────────────────────

    @classmethod
    async def register(cls, db: AsyncSession, data: UserRegister) -> User:
        """Self-registration: always a 'user'-role, active account with no tenant."""
        await cls._ensure_email_available(db, data.email)
        await cls._ensure_phone_available(db, data.phone)

        user = User(
            name=data.name,
            email=data.email,
            phone=data.phone,
            password=hash_password(data.password),
            role=UserRole.user.value,
            status=UserStatus.active.value,
        )
        db.add(user)
        await cls._flush_user(db, user)
        logger.info("User registered", user_id=user.id)
        return user

    @classmethod
    async def authenticate(cls, db: AsyncSession, email: str, password: str) -> User | None:
        """
        Verify credentials and return the User if valid, else None.
        Email lookup is case-insensitive.
        """
        user = await cls.get_user_by_email(db, email)
        if user is None or not verify_password(password, user.password):
            return None
        return user

    # ── Listing ───────────────────────────────────────────────────────────────

    @staticmethod
    async def _query_users(
        db: AsyncSession,
        scope_filter: ScopeFilter,
        filters: UserFilters,
        pagination: Pagination,
    ) -> tuple[int, list[User]]:
        if scope_filter.is_empty:
            return 0, []

        stmt = select(User)
        if scope_filter.tenant_id is not None:
            stmt = stmt.where(User.tenant_id == scope_filter.tenant_id)
        elif scope_filter.branch_id is not None:
            stmt = stmt.where(User.branch_id == scope_filter.branch_id)

        clause = search_clause(filters.q, [User.name, User.email, User.phone])
        if clause is not None:
            stmt = stmt.where(clause)
        if filters.role:
            stmt = stmt.where(User.role == UserRole.normalize(filters.role).value)
        if filters.status:
            stmt = stmt.where(User.status == UserStatus.normalize(filters.status).value)
        if filters.branch_id:
            stmt = stmt.where(User.branch_id == filters.branch_id)

        return await paginate(db, stmt, User, pagination)

    @classmethod
    async def list_users(
        cls,
        db: AsyncSession,
        scope: TenantScope,
        filters: UserFilters,
        pagination: Pagination,
        tenant_filter: Optional[int] = None,
    ) -> tuple[int, list[UserRead]]:
        """
        Authenticated listing for admins and owners.

        `tenant_filter` (the `owner` query parameter) narrows the result; it
        never widens an owner's view beyond its own tenant.
        """
        AuthorizationPolicy.enforce(scope, Operation.list, Resource.user)
        scope_filter = resolve_list_scope(scope).narrowed_to(tenant_filter)
        total, users = await cls._query_users(db, scope_filter, filters, pagination)
        return total, await cls.hydrate_many(db, users)

    @classmethod
    async def list_public_users(
        cls,
        db: AsyncSession,
        scope: Optional[TenantScope],
        filters: UserFilters,
        pagination: Pagination,
        explicit_tenant_id: Optional[int] = None,
    ) -> tuple[int, list[UserRead]]:
        """Public listing: explicit tenant, else the caller's own scope, else empty."""
        scope_filter = resolve_list_scope(scope, explicit_tenant_id, public=True)
        total, users = await cls._query_users(db, scope_filter, filters, pagination)
        return total, await cls.hydrate_many(db, users)

    # ── Management ────────────────────────────────────────────────────────────

    @classmethod
    async def read_user(cls, db: AsyncSession, scope: TenantScope, user_id: int) -> User:
        user = await cls.get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found")
        AuthorizationPolicy.enforce(
            scope,
            Operation.read,
            Resource.user,
            resource_tenant_id=user.tenant_id,
            resource_id=user.id,
        )
        return user

    @staticmethod
    async def _resolve_assignment(
        db: AsyncSession,
        scope: TenantScope,
        operation: Operation,
        role: UserRole,
        tenant_id: Optional[int],
        branch_id: Optional[int],
    ) -> tuple[Optional[int], Optional[int]]:
        """
        Apply the role/branch rules and return the final (tenant_id, branch_id).

        Branch-scoped roles take their tenant from the branch; backend users
        belong to a tenant and no branch.
        """
        if role.is_branch_scoped and not branch_id:
            raise BadRequestError("branch is required for staff/mechanic/callboy")

        if role is UserRole.backend:
            if scope.is_owner:
                tenant_id = scope.tenant_id
            if not tenant_id:
                raise BadRequestError("owner is required for backend role")
            return tenant_id, None

        if branch_id:
            branch = await BranchService.get_branch(db, branch_id)
            if branch is None:
                raise NotFoundError("Branch not found")
            AuthorizationPolicy.enforce(
                scope,
                operation,
                Resource.branch,
                resource_tenant_id=branch.tenant_id,
                resource_id=branch.id,
            )
            if role.is_branch_scoped:
                tenant_id = branch.tenant_id

        return tenant_id, branch_id

    @classmethod
    async def create_user(cls, db: AsyncSession, scope: TenantScope, data: UserCreate) -> User:
        """
        Admin/owner-initiated user creation.

        Owners always create inside their own tenant; only admins may create
        admin or owner accounts. Creating an owner creates its tenant with
        the requested branch limit.
        """
        if not scope.role.is_manager:
            AuthorizationPolicy.enforce(scope, Operation.create, Resource.user)

        role = data.role
        tenant_id = data.tenant_id if scope.is_admin else (data.tenant_id or scope.tenant_id)
        AuthorizationPolicy.enforce(
            scope,
            Operation.create,
            Resource.user,
            resource_tenant_id=tenant_id,
            target_role=role,
        )
        if scope.is_admin and tenant_id and await TenantService.get_tenant_by_id(db, tenant_id) is None:
            raise NotFoundError("Owner not found")

        tenant_id, branch_id = await cls._resolve_assignment(
            db, scope, Operation.create, role, tenant_id, data.requested_branch_id()
        )

        await cls._ensure_email_available(db, data.email)
        await cls._ensure_phone_available(db, data.phone)
        await cls._ensure_branch_role_available(db, branch_id, role)

        user = User(
            name=data.name,
            email=data.email,
            phone=data.phone,
            password=hash_password(data.password),
            role=role.value,
            status=data.status.value,
            tenant_id=tenant_id,
            branch_id=branch_id,
        )
        db.add(user)
        await cls._flush_user(db, user)

        if role is UserRole.owner:
            tenant, _ = await TenantService.ensure_tenant(db, user.id, data.max_branches)
            user.tenant_id = tenant.id
            await cls._flush_user(db, user)

        logger.info(
            "User created",
            user_id=user.id,
            role=user.role,
            tenant_id=user.tenant_id,
            branch_id=user.branch_id,
            by_user=scope.user_id,
        )
        return user

    @classmethod
    async def update_user(
        cls,
        db: AsyncSession,
        scope: TenantScope,
        user_id: int,
        data: UserUpdate,
    ) -> User:
        if not scope.role.is_manager:
            AuthorizationPolicy.enforce(scope, Operation.update, Resource.user)

        target = await cls.get_user(db, user_id)
        if target is None:
            raise NotFoundError("User not found")

        current_role = target.role_enum
        role = data.role or current_role

        owned_tenant = None
        if data.max_branches is not None:
            owned_tenant = await TenantService.get_tenant_by_user_id(db, target.id)
        changes_quota = data.max_branches is not None and (
            owned_tenant is None or owned_tenant.max_branches != data.max_branches
        )

        AuthorizationPolicy.enforce(
            scope,
            Operation.update,
            Resource.user,
            resource_tenant_id=target.tenant_id,
            resource_id=target.id,
            target_role=role,
            current_role=current_role,
            changes_quota=changes_quota,
        )

        tenant_id = target.tenant_id
        if data.tenant_id:
            AuthorizationPolicy.enforce(
                scope, Operation.update, Resource.user, resource_tenant_id=data.tenant_id
            )
            if await TenantService.get_tenant_by_id(db, data.tenant_id) is None:
                raise NotFoundError("Owner not found")
            tenant_id = data.tenant_id

        branch_id = data.requested_branch_id() or target.branch_id
        tenant_id, branch_id = await cls._resolve_assignment(
            db, scope, Operation.update, role, tenant_id, branch_id
        )

        if data.email and data.email != target.email:
            await cls._ensure_email_available(db, data.email, exclude_id=target.id)
            target.email = data.email
        if "phone" in data.model_fields_set and data.phone != target.phone:
            await cls._ensure_phone_available(db, data.phone, exclude_id=target.id)
            target.phone = data.phone
        await cls._ensure_branch_role_available(db, branch_id, role, exclude_id=target.id)

        if data.name:
            target.name = data.name
        if data.password:
            target.password = hash_password(data.password)
        if data.status is not None:
            target.status = data.status.value
        target.role = role.value
        target.tenant_id = tenant_id
        target.branch_id = branch_id
        await cls._flush_user(db, target)

        if role is UserRole.owner:
            tenant, created = await TenantService.ensure_tenant(db, target.id, data.max_branches)
            if not created and changes_quota:
                await TenantService.update_settings(db, tenant, max_branches=data.max_branches)
            target.tenant_id = tenant.id
            await cls._flush_user(db, target)
        elif owned_tenant is not None and changes_quota:
            await TenantService.update_settings(db, owned_tenant, max_branches=data.max_branches)

        logger.info(
            "User updated",
            user_id=target.id,
            role=target.role,
            tenant_id=target.tenant_id,
            branch_id=target.branch_id,
            by_user=scope.user_id,
        )
        return target

    @classmethod
    async def delete_user(cls, db: AsyncSession, scope: TenantScope, user_id: int) -> None:
        if not scope.role.is_manager:
            AuthorizationPolicy.enforce(scope, Operation.delete, Resource.user)

        target = await cls.get_user(db, user_id)
        if target is None:
            raise NotFoundError("User not found")
        AuthorizationPolicy.enforce(
            scope,
            Operation.delete,
            Resource.user,
            resource_tenant_id=target.tenant_id,
            resource_id=target.id,
        )
        await db.delete(target)
        await db.flush()
        logger.info("User deleted", user_id=user_id, by_user=scope.user_id)

    # ── Self-service ──────────────────────────────────────────────────────────

    @classmethod
    async def become_owner(cls, db: AsyncSession, user: User, data: BecomeOwnerRequest) -> User:
        """
        Upgrade the caller to owner, creating its tenant if absent.

        The branch limit only applies if the tenant is created here.
        """
        if user.role_enum is UserRole.owner:
            raise BadRequestError("Already an owner")

        tenant, _ = await TenantService.ensure_tenant(db, user.id, data.max_branches)
        await TenantService.update_settings(
            db, tenant, web_app_url=data.web_app_url, logo_url=data.logo_url
        )
        user.role = UserRole.owner.value
        user.tenant_id = tenant.id
        await cls._flush_user(db, user)

        logger.info("User became owner", user_id=user.id, tenant_id=tenant.id)
        return user

    @classmethod
    async def update_profile(
        cls,
        db: AsyncSession,
        scope: TenantScope,
        user: User,
        data: ProfileUpdate,
    ) -> User:
        """
        Update the caller's name/phone and its tenant's settings.

        An owner without a tenant record gets one (with the requested branch
        limit). Admins without a tenant may target one with `ownerId`.
        """
        if not scope.role.is_manager:
            AuthorizationPolicy.enforce(scope, Operation.update, Resource.tenant)

        tenant = await TenantService.get_tenant_by_user_id(db, user.id)
        created = False
        if tenant is None and scope.is_owner:
            tenant, created = await TenantService.ensure_tenant(db, user.id, data.max_branches)
            user.tenant_id = tenant.id
            scope = dataclasses.replace(scope, tenant_id=tenant.id)
        if tenant is None and scope.is_admin and data.tenant_id:
            tenant = await TenantService.get_tenant_by_id(db, data.tenant_id)
        if tenant is None:
            raise NotFoundError("Owner profile not found")

        changes_quota = (
            not created
            and data.max_branches is not None
            and data.max_branches != tenant.max_branches
        )
        AuthorizationPolicy.enforce(
            scope,
            Operation.update,
            Resource.tenant,
            resource_tenant_id=tenant.id,
            changes_quota=changes_quota,
            creating_tenant=created,
        )

        if data.name:
            user.name = data.name
        if data.phone and data.phone != user.phone:
            await cls._ensure_phone_available(db, data.phone, exclude_id=user.id)
            user.phone = data.phone
        await cls._flush_user(db, user)

        await TenantService.update_settings(
            db,
            tenant,
            web_app_url=data.web_app_url,
            logo_url=data.logo_url,
            max_branches=data.max_branches if changes_quota else None,
        )
        logger.info("Profile updated", user_id=user.id, tenant_id=tenant.id)
        return user

    @classmethod
    async def forgot_password(cls, db: AsyncSession, email: str) -> str:
        """
        Issue a password reset token and return it raw.

        Only its sha256 is stored; delivery is left to the caller.
        """
        user = await cls.get_user_by_email(db, email)
        if user is None:
            raise NotFoundError("We could not find an account with that email.")

        raw_token = generate_reset_token()
        user.reset_token = hash_reset_token(raw_token)
        user.reset_expires_at = datetime.now(timezone.utc) + timedelta(
            minutes=settings.RESET_TOKEN_EXPIRE_MINUTES
        )
        await db.flush()
        logger.info("Password reset issued", user_id=user.id, expires_at=user.reset_expires_at.isoformat())
        return raw_token

    @staticmethod
    async def reset_password(db: AsyncSession, raw_token: str, new_password: str) -> None:
        result = await db.execute(
            select(User).where(User.reset_token == hash_reset_token(raw_token))
        )
        user = result.scalar_one_or_none()

        expires_at = user.reset_expires_at if user is not None else None
        if expires_at is not None and expires_at.tzinfo is None:
            # SQLite hands back naive datetimes
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if user is None or expires_at is None or expires_at <= datetime.now(timezone.utc):
            raise BadRequestError("Reset link is invalid or has expired.")

        user.password = hash_password(new_password)
        user.reset_token = None
        user.reset_expires_at = None
        await db.flush()
        logger.info("Password reset completed", user_id=user.id)
