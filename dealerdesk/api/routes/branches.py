"""
api/routes/branches.py
----------------------
Branch endpoints.

GET    /branches/public  Public listing (explicit `owner`, else the caller's scope).
GET    /branches         Scoped listing for any authenticated user.
GET    /branches/{id}    Single branch, inside the caller's scope.
POST   /branches         Owner/admin: create (quota-checked for owners).
PUT    /branches/{id}    Owner/admin: update.
DELETE /branches/{id}    Owner/admin: delete.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Query, status

from dealerdesk.dependencies import CurrentScope, DbSession, OptionalScope
from dealerdesk.schemas.branch import BranchCreate, BranchRead, BranchUpdate
from dealerdesk.schemas.common import ApiResponse, Page
from dealerdesk.services.authorization import AuthorizationPolicy, Operation, Resource
from dealerdesk.services.branch_service import BranchFilters, BranchService
from dealerdesk.services.scoping import Pagination, parse_id, resolve_list_scope

router = APIRouter(prefix="/branches", tags=["Branches"])


def _filters(q: Optional[str], status_: Optional[str], type_: Optional[str]) -> BranchFilters:
    return BranchFilters(q=q, status=status_, type=type_)


@router.get(
    "/public",
    response_model=ApiResponse[Page[BranchRead]],
    summary="List branches without requiring a credential",
)
async def list_public_branches(
    db: DbSession,
    scope: OptionalScope,
    owner: Annotated[Optional[str], Query()] = None,
    q: Annotated[Optional[str], Query()] = None,
    status_: Annotated[Optional[str], Query(alias="status")] = None,
    type_: Annotated[Optional[str], Query(alias="type")] = None,
    limit: Annotated[Optional[str], Query()] = None,
    page: Annotated[Optional[str], Query()] = None,
) -> ApiResponse[Page[BranchRead]]:
    """
    An explicit `owner` id wins (an unparsable one counts as absent);
    otherwise the optional credential's scope applies. With neither, the
    result is empty rather than an error.
    """
    scope_filter = resolve_list_scope(scope, parse_id(owner), public=True)
    total, branches = await BranchService.list_branches(
        db, scope_filter, _filters(q, status_, type_), Pagination.from_params(limit, page)
    )
    items = [BranchRead.from_model(b) for b in branches]
    return ApiResponse(data=Page(items=items, total=total))


@router.get(
    "",
    response_model=ApiResponse[Page[BranchRead]],
    summary="List branches visible to the caller",
)
async def list_branches(
    db: DbSession,
    scope: CurrentScope,
    owner: Annotated[Optional[str], Query()] = None,
    q: Annotated[Optional[str], Query()] = None,
    status_: Annotated[Optional[str], Query(alias="status")] = None,
    type_: Annotated[Optional[str], Query(alias="type")] = None,
    limit: Annotated[Optional[str], Query()] = None,
    page: Annotated[Optional[str], Query()] = None,
) -> ApiResponse[Page[BranchRead]]:
    AuthorizationPolicy.enforce(scope, Operation.list, Resource.branch)
    scope_filter = resolve_list_scope(scope).narrowed_to(parse_id(owner))
    total, branches = await BranchService.list_branches(
        db, scope_filter, _filters(q, status_, type_), Pagination.from_params(limit, page)
    )
    items = [BranchRead.from_model(b) for b in branches]
    return ApiResponse(data=Page(items=items, total=total))


@router.get(
    "/{branch_id}",
    response_model=ApiResponse[BranchRead],
    summary="Get one branch",
)
async def get_branch(
    branch_id: int,
    db: DbSession,
    scope: CurrentScope,
) -> ApiResponse[BranchRead]:
    branch = await BranchService.read_branch(db, scope, branch_id)
    return ApiResponse(data=BranchRead.from_model(branch))


@router.post(
    "",
    response_model=ApiResponse[BranchRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create a branch",
)
async def create_branch(
    body: BranchCreate,
    db: DbSession,
    scope: CurrentScope,
) -> ApiResponse[BranchRead]:
    """
    Owners create inside their own account and are limited to their branch
    quota; an over-quota attempt is recorded as a pending branch request
    and answered with 403. Admins may pass `ownerId` and bypass the quota.
    """
    branch = await BranchService.create_branch(db, scope, body)
    return ApiResponse(message="Branch created", data=BranchRead.from_model(branch))


@router.put(
    "/{branch_id}",
    response_model=ApiResponse[BranchRead],
    summary="Update a branch",
)
async def update_branch(
    branch_id: int,
    body: BranchUpdate,
    db: DbSession,
    scope: CurrentScope,
) -> ApiResponse[BranchRead]:
    branch = await BranchService.update_branch(db, scope, branch_id, body)
    return ApiResponse(message="Branch updated", data=BranchRead.from_model(branch))


@router.delete(
    "/{branch_id}",
    response_model=ApiResponse[None],
    summary="Delete a branch",
)
async def delete_branch(
    branch_id: int,
    db: DbSession,
    scope: CurrentScope,
) -> ApiResponse[None]:
    await BranchService.delete_branch(db, scope, branch_id)
    return ApiResponse(message="Branch deleted")
