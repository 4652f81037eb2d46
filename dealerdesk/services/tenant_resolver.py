"""
services/tenant_resolver.py
---------------------------
Resolve the tenant boundary of an authenticated user.

  - owner:  the tenant whose user_id is the owner's id. Never created here;
            an owner without a tenant record simply has no tenant scope.
  - others: users.tenant_id (may be NULL).

branch_id is carried along so branch-scoped roles without a tenant can
still be served their own branch.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.models.tenant import Tenant
from dealerdesk.models.user import User, UserRole


@dataclass(frozen=True)
class TenantScope:
    user_id: int
    role: UserRole
    tenant_id: Optional[int] = None
    branch_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.admin

    @property
    def is_owner(self) -> bool:
        return self.role is UserRole.owner


class TenantResolver:

    @staticmethod
    async def resolve(db: AsyncSession, user: User) -> TenantScope:
        role = UserRole.normalize(user.role)
        if role is UserRole.owner:
            result = await db.execute(select(Tenant.id).where(Tenant.user_id == user.id))
            tenant_id = result.scalar_one_or_none()
        else:
            tenant_id = user.tenant_id
        return TenantScope(
            user_id=user.id,
            role=role,
            tenant_id=tenant_id,
            branch_id=user.branch_id,
        )
