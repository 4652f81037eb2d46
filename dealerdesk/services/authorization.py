"""
services/authorization.py
-------------------------
Centralized tenant-scope and RBAC decisions for branch, user and tenant
operations.

Rules, in precedence order:
  1. No principal                  → unauthenticated
  2. admin                         → everything, any tenant
  3. owner                         → only inside its own tenant (plus its own
                                     user record); may never grant admin/owner
                                     and may only set the branch limit while
                                     the tenant is being created
  4. every other role              → read-only: branches of its tenant, or its
                                     own branch for branch-scoped roles, and its
                                     own user record

check() is a pure function over a TenantScope; enforce() raises and logs.
Callers load the target first so a missing resource is a 404, never a 403.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from dealerdesk.core.errors import AuthenticationError, PermissionDeniedError
from dealerdesk.core.logging import get_logger
from dealerdesk.models.user import UserRole
from dealerdesk.services.tenant_resolver import TenantScope

logger = get_logger(__name__)

ESCALATED_ROLES = frozenset({UserRole.admin, UserRole.owner})


class Operation(str, Enum):
    list = "list"
    read = "read"
    create = "create"
    update = "update"
    delete = "delete"


class Resource(str, Enum):
    branch = "branch"
    user = "user"
    tenant = "tenant"


class DenialReason(str, Enum):
    unauthenticated = "unauthenticated"
    cross_tenant = "forbidden-cross-tenant"
    role_escalation = "forbidden-role-escalation"
    role_required = "forbidden-role-required"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenialReason] = None
    message: str = ""

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason, message: str) -> "Decision":
        return cls(allowed=False, reason=reason, message=message)


class AuthorizationPolicy:

    @classmethod
    def check(
        cls,
        scope: Optional[TenantScope],
        operation: Operation,
        resource: Resource,
        *,
        resource_tenant_id: Optional[int] = None,
        resource_id: Optional[int] = None,
        target_role: Optional[UserRole] = None,
        current_role: Optional[UserRole] = None,
        changes_quota: bool = False,
        creating_tenant: bool = False,
    ) -> Decision:
        """
        Decide whether `scope` may perform `operation` on `resource`.

        Args:
            resource_tenant_id: Tenant the target belongs to (or will belong to).
            resource_id:        Branch id / user id of the target, for the
                                own-branch and own-record exceptions.
            target_role:        Role being assigned on user create/update.
            current_role:       Role the target user has today (update only).
            changes_quota:      The request sets the tenant's branch limit.
            creating_tenant:    The tenant record is being created right now.
        """
        if scope is None:
            return Decision.deny(DenialReason.unauthenticated, "Unauthorized")

        if scope.role is UserRole.admin:
            return Decision.allow()

        if scope.role is UserRole.owner:
            return cls._check_owner(
                scope,
                operation,
                resource,
                resource_tenant_id=resource_tenant_id,
                resource_id=resource_id,
                target_role=target_role,
                current_role=current_role,
                changes_quota=changes_quota,
                creating_tenant=creating_tenant,
            )

        return cls._check_member(
            scope,
            operation,
            resource,
            resource_tenant_id=resource_tenant_id,
            resource_id=resource_id,
        )

    @staticmethod
    def _check_owner(
        scope: TenantScope,
        operation: Operation,
        resource: Resource,
        *,
        resource_tenant_id: Optional[int],
        resource_id: Optional[int],
        target_role: Optional[UserRole],
        current_role: Optional[UserRole],
        changes_quota: bool,
        creating_tenant: bool,
    ) -> Decision:
        if (
            operation in (Operation.create, Operation.update)
            and target_role in ESCALATED_ROLES
            and target_role is not current_role
        ):
            return Decision.deny(
                DenialReason.role_escalation,
                f"Only admin can assign the {target_role.value} role",
            )
        if changes_quota and not creating_tenant:
            return Decision.deny(
                DenialReason.role_escalation,
                "Only admin can change the branch limit",
            )

        if operation is Operation.list:
            return Decision.allow()
        if resource is Resource.user and resource_id is not None and resource_id == scope.user_id:
            return Decision.allow()
        if scope.tenant_id is not None and resource_tenant_id == scope.tenant_id:
            return Decision.allow()
        return Decision.deny(DenialReason.cross_tenant, "Forbidden: not in your account")

    @staticmethod
    def _check_member(
        scope: TenantScope,
        operation: Operation,
        resource: Resource,
        *,
        resource_tenant_id: Optional[int],
        resource_id: Optional[int],
    ) -> Decision:
        if resource is Resource.branch and operation in (Operation.list, Operation.read):
            if operation is Operation.list:
                return Decision.allow()
            if scope.tenant_id is not None and resource_tenant_id == scope.tenant_id:
                return Decision.allow()
            if (
                scope.role.is_branch_scoped
                and scope.branch_id is not None
                and resource_id == scope.branch_id
            ):
                return Decision.allow()
            return Decision.deny(DenialReason.cross_tenant, "Forbidden: not in your account")

        if (
            resource is Resource.user
            and operation is Operation.read
            and resource_id is not None
            and resource_id == scope.user_id
        ):
            return Decision.allow()

        return Decision.deny(DenialReason.role_required, "Forbidden: admin/owner only")

    @classmethod
    def enforce(
        cls,
        scope: Optional[TenantScope],
        operation: Operation,
        resource: Resource,
        **kwargs,
    ) -> None:
        """Raise AuthenticationError / PermissionDeniedError unless allowed."""
        decision = cls.check(scope, operation, resource, **kwargs)
        if decision.allowed:
            return

        logger.warning(
            "Access denied",
            reason=decision.reason.value,
            operation=operation.value,
            resource=resource.value,
            user_id=getattr(scope, "user_id", None),
            user_role=getattr(getattr(scope, "role", None), "value", None),
            user_tenant=getattr(scope, "tenant_id", None),
            resource_tenant=kwargs.get("resource_tenant_id"),
            resource_id=kwargs.get("resource_id"),
        )
        if decision.reason is DenialReason.unauthenticated:
            raise AuthenticationError(decision.message, reason=decision.reason.value)
        raise PermissionDeniedError(decision.message, reason=decision.reason.value)
