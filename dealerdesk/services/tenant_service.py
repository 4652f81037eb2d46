"""
services/tenant_service.py
--------------------------
Business logic for tenant (owner account) records.

Service layer is responsible for:
  - Constructing queries
  - Enforcing business rules (one tenant per owner, quota only at creation)
  - Returning domain objects (ORM models) to the caller
  - Never returning HTTP responses (that's the route's job)
"""

from typing import Iterable

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.logging import get_logger
from dealerdesk.models.tenant import DEFAULT_MAX_BRANCHES, Tenant
from dealerdesk.models.user import User

logger = get_logger(__name__)


class TenantService:

    @staticmethod
    async def get_tenant_by_id(db: AsyncSession, tenant_id: int | None) -> Tenant | None:
        if not tenant_id:
            return None
        return await db.get(Tenant, tenant_id)

    @staticmethod
    async def get_tenant_by_user_id(db: AsyncSession, user_id: int) -> Tenant | None:
        result = await db.execute(select(Tenant).where(Tenant.user_id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_tenants_for_users(db: AsyncSession, users: Iterable[User]) -> dict[int, Tenant]:
        """
        Tenants of a batch of users in one query, keyed by user id.

        A user with users.tenant_id gets that tenant; otherwise the tenant it
        owns (tenants.user_id), if any.
        """
        users = list(users)
        tenant_ids = {u.tenant_id for u in users if u.tenant_id}
        owner_ids = {u.id for u in users if not u.tenant_id}
        if not tenant_ids and not owner_ids:
            return {}

        result = await db.execute(
            select(Tenant).where(or_(Tenant.id.in_(tenant_ids), Tenant.user_id.in_(owner_ids)))
        )
        tenants = result.scalars().all()
        by_id = {t.id: t for t in tenants}
        by_owner = {t.user_id: t for t in tenants}

        resolved = {}
        for user in users:
            tenant = by_id.get(user.tenant_id) if user.tenant_id else by_owner.get(user.id)
            if tenant is not None:
                resolved[user.id] = tenant
        return resolved

    @classmethod
    async def ensure_tenant(
        cls,
        db: AsyncSession,
        user_id: int,
        max_branches: int | None = None,
    ) -> tuple[Tenant, bool]:
        """
        Return the user's tenant, creating it if needed.

        The branch limit is only applied when the record is created; an
        existing tenant keeps its quota.

        Returns:
            (tenant, created)
        """
        tenant = await cls.get_tenant_by_user_id(db, user_id)
        if tenant is not None:
            return tenant, False

        tenant = Tenant(
            user_id=user_id,
            max_branches=max_branches if max_branches is not None else DEFAULT_MAX_BRANCHES,
        )
        db.add(tenant)
        await db.flush()
        await db.refresh(tenant)
        logger.info(
            "Tenant created",
            tenant_id=tenant.id,
            user_id=user_id,
            max_branches=tenant.max_branches,
        )
        return tenant, True

    @staticmethod
    async def update_settings(
        db: AsyncSession,
        tenant: Tenant,
        web_app_url: str | None = None,
        logo_url: str | None = None,
        max_branches: int | None = None,
    ) -> Tenant:
        """Apply non-empty settings; callers authorize max_branches changes."""
        if web_app_url:
            tenant.web_app_url = web_app_url
        if logo_url:
            tenant.logo_url = logo_url
        if max_branches is not None:
            tenant.max_branches = max_branches
        await db.flush()
        await db.refresh(tenant)
        logger.info("Tenant updated", tenant_id=tenant.id, max_branches=tenant.max_branches)
        return tenant
