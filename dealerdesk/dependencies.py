"""
dependencies.py
---------------
FastAPI dependency injection functions for authentication and tenant scope.

Flow:
  1. The token is read from `Authorization: Bearer <token>`, falling back to
     the `token` query parameter.
  2. verify_access_token checks the signature and expiry (no DB round-trip).
  3. get_current_user loads the full User record from the DB so deleted
     users are rejected even while their token is still valid.
  4. get_current_scope resolves the user's tenant boundary (TenantScope),
     which every service uses for authorization and list scoping.

The optional variants never raise; they back the public read paths.
"""

from typing import Annotated, Optional

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.errors import AuthenticationError
from dealerdesk.core.logging import get_logger
from dealerdesk.core.security import verify_access_token
from dealerdesk.db.session import get_db
from dealerdesk.models.user import User
from dealerdesk.services.tenant_resolver import TenantResolver, TenantScope

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    token: Annotated[Optional[str], Query(include_in_schema=False)] = None,
) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return token or None


async def _load_user(db: AsyncSession, token: Optional[str]) -> Optional[User]:
    payload = verify_access_token(token)
    if payload is None:
        return None

    user_id = payload.get("id")
    if isinstance(user_id, str) and user_id.isdigit():
        user_id = int(user_id)
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        return None

    # Always re-verify against DB so deleted users are rejected
    return await db.get(User, user_id)


async def get_optional_user(
    token: Annotated[Optional[str], Depends(get_token)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Optional[User]:
    if not token:
        return None
    return await _load_user(db, token)


async def get_current_user(
    token: Annotated[Optional[str], Depends(get_token)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Verify the token, then load and return the full User from the database.
    Raises 401 if the token is missing or invalid, or the user no longer exists.
    """
    if not token:
        raise AuthenticationError("Unauthorized", reason="unauthenticated")

    user = await _load_user(db, token)
    if user is None:
        logger.warning("Rejected access token")
        raise AuthenticationError("Invalid token", reason="unauthenticated")
    return user


async def get_current_scope(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TenantScope:
    return await TenantResolver.resolve(db, user)


async def get_optional_scope(
    user: Annotated[Optional[User], Depends(get_optional_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Optional[TenantScope]:
    if user is None:
        return None
    return await TenantResolver.resolve(db, user)


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentScope = Annotated[TenantScope, Depends(get_current_scope)]
OptionalScope = Annotated[Optional[TenantScope], Depends(get_optional_scope)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
