"""
models/__init__.py
------------------
Re-export all models so the schema bootstrap can import Base and discover
all tables via a single import:

    from dealerdesk.models import Base
"""

from dealerdesk.db.base import Base
from dealerdesk.models.tenant import Tenant
from dealerdesk.models.user import User, UserRole, UserStatus
from dealerdesk.models.branch import (
    Branch,
    BranchRequest,
    BranchRequestStatus,
    BranchStatus,
    BranchType,
)

__all__ = [
    "Base",
    "Tenant",
    "User",
    "UserRole",
    "UserStatus",
    "Branch",
    "BranchRequest",
    "BranchRequestStatus",
    "BranchStatus",
    "BranchType",
]
