"""
schemas/tenant.py
-----------------
Pydantic models for the tenant (owner account) summary.

The web client calls the tenant "owner", so the wire names are
owner-flavoured: {"id", "webAppUrl", "logoUrl", "maxBranches"}.
"""

from pydantic import BaseModel, ConfigDict, Field

from dealerdesk.models.tenant import Tenant


class TenantSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    web_app_url: str = Field(default="", alias="webAppUrl")
    logo_url: str = Field(default="", alias="logoUrl")
    max_branches: int = Field(alias="maxBranches")

    @classmethod
    def from_model(cls, tenant: Tenant) -> "TenantSummary":
        return cls(
            id=tenant.id,
            web_app_url=tenant.web_app_url or "",
            logo_url=tenant.logo_url or "",
            max_branches=tenant.max_branches,
        )
