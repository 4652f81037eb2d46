"""
services/scoping.py
-------------------
Tenant-scoped, paginated listing.

Scope resolution (resolve_list_scope), first match wins:
  1. explicit tenant id        (public path only)
  2. everything                (admins on the authenticated path)
  3. the caller's tenant
  4. the caller's own branch   (branch-scoped roles without a tenant)
  5. nothing

Non-admins never get an unscoped listing. Pages are ordered newest first
with id as a tiebreak so equal timestamps still page deterministically.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.config import settings
from dealerdesk.services.tenant_resolver import TenantScope


def parse_int(value: Any) -> Optional[int]:
    """Lenient integer parse for query strings: blank or malformed input is None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_id(value: Any) -> Optional[int]:
    """A row id from a query string, or None when it is not a positive integer."""
    number = parse_int(value)
    return number if number is not None and number > 0 else None


@dataclass(frozen=True)
class Pagination:
    limit: int
    page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_params(cls, limit: Any = None, page: Any = None) -> "Pagination":
        """Unparsable values fall back to the defaults; parsed ones are clamped."""
        effective_limit = parse_int(limit)
        if effective_limit is None:
            effective_limit = settings.LIST_DEFAULT_LIMIT
        effective_limit = max(1, min(effective_limit, settings.LIST_MAX_LIMIT))
        effective_page = max(parse_int(page) or 1, 1)
        return cls(limit=effective_limit, page=effective_page)


@dataclass(frozen=True)
class ScopeFilter:
    tenant_id: Optional[int] = None
    branch_id: Optional[int] = None
    unrestricted: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and self.tenant_id is None and self.branch_id is None

    @classmethod
    def nothing(cls) -> "ScopeFilter":
        return cls()

    @classmethod
    def everything(cls) -> "ScopeFilter":
        return cls(unrestricted=True)

    def narrowed_to(self, tenant_id: Optional[int]) -> "ScopeFilter":
        """Apply an explicit tenant filter without ever widening the scope."""
        if tenant_id is None or (self.tenant_id is None and not self.unrestricted):
            return self
        if self.unrestricted or self.tenant_id == tenant_id:
            return ScopeFilter(tenant_id=tenant_id)
        return ScopeFilter.nothing()


def resolve_list_scope(
    scope: Optional[TenantScope],
    explicit_tenant_id: Optional[int] = None,
    public: bool = False,
) -> ScopeFilter:
    if public and explicit_tenant_id is not None:
        return ScopeFilter(tenant_id=explicit_tenant_id)
    if scope is None:
        return ScopeFilter.nothing()
    if scope.is_admin and not public:
        return ScopeFilter.everything()
    if scope.tenant_id is not None:
        return ScopeFilter(tenant_id=scope.tenant_id)
    if scope.role.is_branch_scoped and scope.branch_id is not None:
        return ScopeFilter(branch_id=scope.branch_id)
    return ScopeFilter.nothing()


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_clause(q: Optional[str], columns: Sequence[Any]):
    """Case-insensitive substring match of `q` against any of `columns`."""
    term = (q or "").strip()
    if not term:
        return None
    pattern = f"%{escape_like(term)}%"
    return or_(*(column.ilike(pattern, escape="\\") for column in columns))


async def paginate(
    db: AsyncSession,
    stmt: Select,
    model: Any,
    pagination: Pagination,
) -> Tuple[int, list]:
    """
    Count and fetch one page of `stmt`.

    Returns:
        (total_count, page_of_rows)
    """
    count_result = await db.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    )
    total = count_result.scalar_one()

    result = await db.execute(
        stmt.order_by(model.created_at.desc(), model.id.desc())
        .offset(pagination.offset)
        .limit(pagination.limit)
    )
    return total, list(result.scalars().all())
