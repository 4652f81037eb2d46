"""
models/branch.py
----------------
Branch and BranchRequest ORM models.

A branch belongs to exactly one tenant; its code is stored uppercased and is
unique within the tenant. `team` holds the normalized roster produced by
schemas.branch.Team (category -> list of {name, phone?}).

A BranchRequest is written whenever a non-admin tries to create a branch
beyond the tenant's quota. Requests stay 'pending' until an admin handles
them out of band.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from dealerdesk.db.base import Base, BigIntId, JSONDocument, TimestampMixin


class BranchType(str, PyEnum):
    sales = "sales"
    service = "service"
    sales_and_services = "sales & services"

    @classmethod
    def normalize(cls, value) -> "BranchType":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.sales_and_services


class BranchStatus(str, PyEnum):
    active = "active"
    inactive = "inactive"
    under_maintenance = "under_maintenance"

    @classmethod
    def normalize(cls, value) -> "BranchStatus":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.active


class BranchRequestStatus(str, PyEnum):
    pending = "pending"


class Branch(Base, TimestampMixin):
    __tablename__ = "branches"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="branches_tenant_code_unique"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=BranchType.sales_and_services.value,
        server_default=BranchType.sales_and_services.value,
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=BranchStatus.active.value,
        server_default=BranchStatus.active.value,
    )
    team: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Branch id={self.id} tenant_id={self.tenant_id} code={self.code}>"


class BranchRequest(Base):
    __tablename__ = "branch_requests"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    requested_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BranchRequestStatus.pending.value,
        server_default=BranchRequestStatus.pending.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<BranchRequest id={self.id} tenant_id={self.tenant_id} "
            f"requested_count={self.requested_count} status={self.status}>"
        )
