"""
services/quota.py
-----------------
Per-tenant branch quota.

try_reserve_branch() locks the tenant row (SELECT ... FOR UPDATE) before
counting, so the count and the subsequent branch INSERT (or BranchRequest
INSERT) happen in one transaction; concurrent creators for the same tenant
queue behind the lock instead of both passing the check.

On denial a pending BranchRequest is recorded for admin review. The caller
is responsible for committing it before reporting the 403.
Admins never reach this guard.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.errors import NotFoundError
from dealerdesk.core.logging import get_logger
from dealerdesk.models.branch import Branch, BranchRequest
from dealerdesk.models.tenant import Tenant

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    existing_count: int
    quota: int
    request_id: Optional[int] = None


def evaluate(existing_count: int, quota: int) -> bool:
    return existing_count < quota


class QuotaGuard:

    @staticmethod
    async def try_reserve_branch(
        db: AsyncSession,
        tenant_id: int,
        reason: Optional[str] = None,
    ) -> QuotaDecision:
        result = await db.execute(
            select(Tenant).where(Tenant.id == tenant_id).with_for_update()
        )
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Owner not found")

        count_result = await db.execute(
            select(func.count()).select_from(Branch).where(Branch.tenant_id == tenant_id)
        )
        existing = count_result.scalar_one()

        if evaluate(existing, tenant.max_branches):
            return QuotaDecision(allowed=True, existing_count=existing, quota=tenant.max_branches)

        request = BranchRequest(
            tenant_id=tenant_id,
            requested_count=existing + 1,
            requested_reason=reason or None,
        )
        db.add(request)
        await db.flush()

        logger.info(
            "Branch limit reached, request recorded",
            tenant_id=tenant_id,
            existing=existing,
            quota=tenant.max_branches,
            branch_request_id=request.id,
        )
        return QuotaDecision(
            allowed=False,
            existing_count=existing,
            quota=tenant.max_branches,
            request_id=request.id,
        )
