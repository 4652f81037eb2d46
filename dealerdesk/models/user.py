"""
models/user.py
--------------
User ORM model with roles and tenant/branch binding.

Role design:
  - 'admin':    Platform operator, unconstrained by tenant.
  - 'owner':    Owns exactly one Tenant and manages its branches and users.
  - 'staff', 'mechanic', 'callboy':
                Branch-scoped roles; always bound to a branch, and at most one
                user per (branch, role).
  - 'backend':  Back-office user of a tenant, not bound to a branch.
  - 'user':     Self-registered account with no privileges.

The password column stores scrypt "salt:key" hashes only; plain text is
never stored and never logged.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from dealerdesk.db.base import Base, BigIntId, TimestampMixin


class UserRole(str, PyEnum):
    admin = "admin"
    owner = "owner"
    staff = "staff"
    mechanic = "mechanic"
    callboy = "callboy"
    backend = "backend"
    user = "user"

    @classmethod
    def normalize(cls, value) -> "UserRole":
        """Map legacy aliases onto canonical roles; anything unknown becomes 'user'."""
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        raw = ROLE_ALIASES.get(raw, raw)
        try:
            return cls(raw)
        except ValueError:
            return cls.user

    @property
    def is_branch_scoped(self) -> bool:
        return self in BRANCH_SCOPED_ROLES

    @property
    def is_manager(self) -> bool:
        return self in (UserRole.admin, UserRole.owner)


ROLE_ALIASES = {
    "executive": UserRole.staff.value,
    "call-boy": UserRole.callboy.value,
    "call_boy": UserRole.callboy.value,
}

BRANCH_SCOPED_ROLES = frozenset({UserRole.staff, UserRole.mechanic, UserRole.callboy})


class UserStatus(str, PyEnum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"

    @classmethod
    def normalize(cls, value) -> "UserStatus":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.active


class User(Base, TimestampMixin):
    __tablename__ = "users"
    __table_args__ = (
        Index(
            "users_phone_unique",
            "phone",
            unique=True,
            postgresql_where=text("phone IS NOT NULL AND phone <> ''"),
            sqlite_where=text("phone IS NOT NULL AND phone <> ''"),
        ),
        Index(
            "users_branch_role_unique",
            "branch_id",
            "role",
            unique=True,
            postgresql_where=text(
                "role IN ('staff','mechanic','callboy') AND branch_id IS NOT NULL"
            ),
            sqlite_where=text(
                "role IN ('staff','mechanic','callboy') AND branch_id IS NOT NULL"
            ),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False, index=True
    )
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.user.value,
        server_default=UserRole.user.value,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.active.value,
        server_default=UserStatus.active.value,
    )
    tenant_id: Mapped[Optional[int]] = mapped_column(
        BigIntId,
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        BigIntId,
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    reset_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reset_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def role_enum(self) -> UserRole:
        return UserRole.normalize(self.role)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
