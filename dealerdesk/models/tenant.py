"""
models/tenant.py
----------------
Tenant (owner account) ORM model.

Each tenant is the business account of exactly one owner user and the
isolation boundary for its branches and staff. All tenant data is scoped by
tenant_id at the query level; never trust application-level filtering
alone; always include tenant_id in WHERE clauses.

`user_id` is deliberately not a foreign key: users.tenant_id already points
here, and a second FK would make the two tables mutually dependent.
"""

from typing import Optional

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealerdesk.db.base import Base, BigIntId, TimestampMixin

DEFAULT_MAX_BRANCHES = 1


class Tenant(Base, TimestampMixin):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        BigIntId, unique=True, nullable=True, index=True
    )
    web_app_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    max_branches: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_MAX_BRANCHES,
        server_default=str(DEFAULT_MAX_BRANCHES),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} user_id={self.user_id} max_branches={self.max_branches}>"
