"""
Shopify webhook payload models.

The APP_PURCHASES_ONE_TIME_UPDATE topic wraps the purchase in an
``app_purchase_one_time`` envelope; older deliveries and manual replays send
the purchase object bare. Both are accepted.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AppPurchaseOneTimePayload(BaseModel):
    """One-time app purchase as delivered in webhooks."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    admin_graphql_api_id: str | None = None
    id: int | str | None = None
    shop_domain: str | None = None

    @model_validator(mode="before")
    @classmethod
    def unwrap_envelope(cls, data: Any) -> Any:
        """Accept {"app_purchase_one_time": {...}} as well as the bare object."""
        if isinstance(data, dict) and isinstance(data.get("app_purchase_one_time"), dict):
            return data["app_purchase_one_time"]
        return data

    @property
    def charge_id(self) -> str:
        """GraphQL id when present, else the numeric id."""
        if self.admin_graphql_api_id:
            return self.admin_graphql_api_id
        if self.id is not None:
            return str(self.id)
        return ""


class AppUninstalledPayload(BaseModel):
    """app/uninstalled webhook body (the shop object)."""

    model_config = ConfigDict(extra="ignore")

    myshopify_domain: str | None = None
    domain: str | None = None


class AppScopesUpdatePayload(BaseModel):
    """app/scopes_update webhook body: granted scopes before and after."""

    model_config = ConfigDict(extra="ignore")

    previous: list[str] = Field(default_factory=list)
    current: list[str] = Field(default_factory=list)
