"""
schemas/common.py
-----------------
Response envelope shared by every endpoint.

    {"success": true,  "message": "...", "data": ...}
    {"success": false, "message": "...", "reason": "..."}   (see main.py)
"""

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int


class PublicPageResponse(ApiResponse[Page[T]], Generic[T]):
    """Listing served by the public/no-credential path."""
    public: bool = True
