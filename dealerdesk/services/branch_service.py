"""
services/branch_service.py
--------------------------
Business logic for branches.

Every operation is authorized through AuthorizationPolicy against the
caller's TenantScope, and every listing is filtered by the ScopeFilter
resolved in services/scoping.py. Non-admin creation goes through the
QuotaGuard first.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from dealerdesk.core.logging import get_logger
from dealerdesk.models.branch import Branch, BranchStatus, BranchType
from dealerdesk.schemas.branch import BranchCreate, BranchUpdate
from dealerdesk.services.authorization import AuthorizationPolicy, Operation, Resource
from dealerdesk.services.quota import QuotaGuard
from dealerdesk.services.scoping import Pagination, ScopeFilter, paginate, search_clause
from dealerdesk.services.tenant_resolver import TenantScope
from dealerdesk.services.tenant_service import TenantService

logger = get_logger(__name__)

DUPLICATE_CODE_MESSAGE = "Branch code already exists for this owner"
BRANCH_LIMIT_MESSAGE = "Branch limit reached. Request admin approval."


@dataclass(frozen=True)
class BranchFilters:
    q: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None


class BranchService:

    @staticmethod
    async def get_branch(db: AsyncSession, branch_id: int | None) -> Branch | None:
        if not branch_id:
            return None
        return await db.get(Branch, branch_id)

    @staticmethod
    async def get_branches(db: AsyncSession, branch_ids: Iterable[int]) -> dict[int, Branch]:
        ids = {bid for bid in branch_ids if bid}
        if not ids:
            return {}
        result = await db.execute(select(Branch).where(Branch.id.in_(ids)))
        return {branch.id: branch for branch in result.scalars().all()}

    @staticmethod
    async def list_branches(
        db: AsyncSession,
        scope_filter: ScopeFilter,
        filters: BranchFilters,
        pagination: Pagination,
    ) -> tuple[int, list[Branch]]:
        """
        Paginated branch list inside `scope_filter`.

        A branch-only scope yields exactly that branch and ignores filters.
        """
        if scope_filter.is_empty:
            return 0, []

        if scope_filter.branch_id is not None and scope_filter.tenant_id is None:
            branch = await db.get(Branch, scope_filter.branch_id)
            return (1, [branch]) if branch is not None else (0, [])

        stmt = select(Branch)
        if scope_filter.tenant_id is not None:
            stmt = stmt.where(Branch.tenant_id == scope_filter.tenant_id)

        clause = search_clause(filters.q, [Branch.code, Branch.name])
        if clause is not None:
            stmt = stmt.where(clause)
        if filters.status:
            stmt = stmt.where(Branch.status == BranchStatus.normalize(filters.status).value)
        if filters.type:
            stmt = stmt.where(Branch.type == BranchType.normalize(filters.type).value)

        return await paginate(db, stmt, Branch, pagination)

    @classmethod
    async def read_branch(cls, db: AsyncSession, scope: TenantScope, branch_id: int) -> Branch:
        branch = await cls.get_branch(db, branch_id)
        if branch is None:
            raise NotFoundError("Branch not found")
        AuthorizationPolicy.enforce(
            scope,
            Operation.read,
            Resource.branch,
            resource_tenant_id=branch.tenant_id,
            resource_id=branch.id,
        )
        return branch

    @staticmethod
    async def _ensure_code_available(
        db: AsyncSession,
        tenant_id: int,
        code: str,
        exclude_id: int | None = None,
    ) -> None:
        stmt = select(Branch.id).where(Branch.tenant_id == tenant_id, Branch.code == code)
        if exclude_id is not None:
            stmt = stmt.where(Branch.id != exclude_id)
        result = await db.execute(stmt.limit(1))
        if result.scalar_one_or_none() is not None:
            raise ConflictError(DUPLICATE_CODE_MESSAGE)

    @classmethod
    async def create_branch(
        cls,
        db: AsyncSession,
        scope: TenantScope,
        data: BranchCreate,
    ) -> Branch:
        """
        Create a branch for the caller's tenant (admins may name any tenant).

        Raises:
            BadRequestError:       the caller has no tenant to create into.
            PermissionDeniedError: not allowed, or over quota (a pending
                                   BranchRequest is committed first).
            ConflictError:         duplicate code within the tenant.
        """
        target_tenant_id = data.tenant_id or scope.tenant_id
        if target_tenant_id is None and scope.role.is_manager:
            raise BadRequestError("Owner not found")
        AuthorizationPolicy.enforce(
            scope,
            Operation.create,
            Resource.branch,
            resource_tenant_id=target_tenant_id,
        )

        if scope.is_admin:
            if await TenantService.get_tenant_by_id(db, target_tenant_id) is None:
                raise NotFoundError("Owner not found")
        else:
            decision = await QuotaGuard.try_reserve_branch(
                db, target_tenant_id, data.request_reason
            )
            if not decision.allowed:
                await db.commit()
                raise PermissionDeniedError(BRANCH_LIMIT_MESSAGE, reason="branch-limit-reached")

        await cls._ensure_code_available(db, target_tenant_id, data.code)

        branch = Branch(
            tenant_id=target_tenant_id,
            code=data.code,
            name=data.name,
            type=data.type.value,
            status=data.status.value,
            team=data.team.model_dump(),
        )
        db.add(branch)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(DUPLICATE_CODE_MESSAGE)
        await db.refresh(branch)

        logger.info(
            "Branch created",
            branch_id=branch.id,
            tenant_id=branch.tenant_id,
            code=branch.code,
            by_user=scope.user_id,
        )
        return branch

    @classmethod
    async def _load_for_write(
        cls,
        db: AsyncSession,
        scope: TenantScope,
        branch_id: int,
        operation: Operation,
    ) -> Branch:
        if not scope.role.is_manager:
            AuthorizationPolicy.enforce(scope, operation, Resource.branch)

        branch = await cls.get_branch(db, branch_id)
        if branch is None:
            raise NotFoundError("Branch not found")
        AuthorizationPolicy.enforce(
            scope,
            operation,
            Resource.branch,
            resource_tenant_id=branch.tenant_id,
            resource_id=branch.id,
        )
        return branch

    @classmethod
    async def update_branch(
        cls,
        db: AsyncSession,
        scope: TenantScope,
        branch_id: int,
        data: BranchUpdate,
    ) -> Branch:
        branch = await cls._load_for_write(db, scope, branch_id, Operation.update)

        if data.code and data.code != branch.code:
            await cls._ensure_code_available(db, branch.tenant_id, data.code, exclude_id=branch.id)
            branch.code = data.code
        if data.name:
            branch.name = data.name
        if data.type is not None:
            branch.type = data.type.value
        if data.status is not None:
            branch.status = data.status.value
        if data.team is not None:
            branch.team = data.team.model_dump()

        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(DUPLICATE_CODE_MESSAGE)
        await db.refresh(branch)

        logger.info("Branch updated", branch_id=branch.id, tenant_id=branch.tenant_id, by_user=scope.user_id)
        return branch

    @classmethod
    async def delete_branch(cls, db: AsyncSession, scope: TenantScope, branch_id: int) -> None:
        branch = await cls._load_for_write(db, scope, branch_id, Operation.delete)
        await db.delete(branch)
        await db.flush()
        logger.info("Branch deleted", branch_id=branch_id, tenant_id=branch.tenant_id, by_user=scope.user_id)
