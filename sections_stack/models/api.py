"""
API Models - Pydantic models for request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class SectionCategory(str, Enum):
    """Closed set of section categories."""

    HERO = "hero"
    TESTIMONIAL = "testimonial"
    VIDEO = "video"
    TEXT = "text"
    IMAGES = "images"
    SNIPPET = "snippet"
    COUNTDOWN = "countdown"
    SCROLLING = "scrolling"
    FEATURED = "featured"
    OTHER = "other"


class EntitlementStatus(str, Enum):
    """Entitlement status enumeration."""

    PENDING = "pending"
    ACTIVE = "active"


class ChargeStatus(str, Enum):
    """Shopify AppPurchaseOneTime status values."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class CatalogFilter(str, Enum):
    """Storefront listing filters that are not plain categories."""

    ALL = "all"
    NEWEST = "newest"
    FREE = "free"
    PAID = "paid"
    POPULAR = "popular"
    TRENDING = "trending"
    FEATURED = "featured"


# ============================================================================
# Section Models
# ============================================================================


class SectionResponse(BaseModel):
    """Catalog section as returned to the storefront and admin."""

    id: str
    name: str
    identifier: str
    description: str = ""
    detailed_features: list[str] = Field(default_factory=list)
    category: SectionCategory
    tags: list[str] = Field(default_factory=list)
    thumbnail_url: str = ""
    image_gallery: list[str] = Field(default_factory=list)
    price: Decimal
    is_free: bool
    is_popular: bool = False
    is_trending: bool = False
    is_featured: bool = False
    download_count: int = 0
    rating: float = 0.0
    demo_url: str = ""
    created_at: datetime
    updated_at: datetime


class SectionListResponse(BaseModel):
    """GET /api/sections response."""

    sections: list[SectionResponse]
    category: str
    search: str


class SectionDraft(BaseModel):
    """Admin create/update request body for a section."""

    name: str = Field(..., min_length=1, max_length=255)
    identifier: str | None = Field(None, min_length=1, max_length=255)
    description: str = Field("", max_length=5000)
    detailed_features: list[str] = Field(default_factory=list)
    category: SectionCategory
    type: Literal["free", "paid"]
    price: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    tags: list[str] = Field(default_factory=list)
    thumbnail_url: str = ""
    image_gallery: list[str] = Field(default_factory=list)
    is_popular: bool = False
    is_trending: bool = False
    is_featured: bool = False
    demo_url: str = ""
    custom_code: str = ""

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Display names are matched exactly after trimming, so store them trimmed."""
        v = v.strip()
        if not v:
            raise ValueError("name cannot be blank")
        return v

    @field_validator("detailed_features", "tags", "image_gallery")
    @classmethod
    def drop_blank_items(cls, v: list[str]) -> list[str]:
        """Trim list entries and drop empty ones."""
        return [item.strip() for item in v if item.strip()]

    @model_validator(mode="after")
    def validate_price(self) -> "SectionDraft":
        """Paid sections need a positive price."""
        if self.type == "paid" and self.price <= 0:
            raise ValueError("paid sections must have a price greater than 0")
        return self


# ============================================================================
# Purchase / Entitlement Models
# ============================================================================


class PurchaseSectionResponse(BaseModel):
    """POST /api/sections/{id}/purchase response."""

    granted: bool = False
    confirmation_url: str | None = None


class OwnedSectionResponse(BaseModel):
    """One entry of the "My Sections" list."""

    entitlement_id: UUID
    charge_id: str
    status: EntitlementStatus
    granted_at: datetime
    section: SectionResponse


class MySectionsResponse(BaseModel):
    """GET /api/my-sections response."""

    sections: list[OwnedSectionResponse]


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to Shopify for billing webhooks."""

    status: Literal["acknowledged"] = "acknowledged"
    outcome: str


# ============================================================================
# Theme Models
# ============================================================================


class ThemeResponse(BaseModel):
    """A theme of the merchant's store."""

    id: str
    name: str
    role: str


class ThemeListResponse(BaseModel):
    """GET /api/themes response."""

    themes: list[ThemeResponse]


class PublishSectionRequest(BaseModel):
    """POST /api/sections/{id}/publish request body."""

    theme_id: str = Field(..., min_length=1, max_length=255)

    @field_validator("theme_id")
    @classmethod
    def validate_theme_gid(cls, v: str) -> str:
        """Accept numeric theme ids and expand them to GIDs."""
        v = v.strip()
        if v.isdigit():
            return f"gid://shopify/OnlineStoreTheme/{v}"
        if not v.startswith("gid://shopify/"):
            raise ValueError("theme_id must be a numeric id or a Shopify GID")
        return v


class PublishSectionResponse(BaseModel):
    """POST /api/sections/{id}/publish response."""

    section_id: str
    theme_id: str
    filenames: list[str]


# ============================================================================
# Shop Models
# ============================================================================


class RecordInstallationRequest(BaseModel):
    """POST /internal/shops request body (sent after OAuth completes)."""

    shop: str = Field(..., min_length=1, max_length=255)
    access_token: str = Field(..., min_length=1)
    scope: str = Field("", max_length=2000)


class ShopResponse(BaseModel):
    """Shop account without its access credential."""

    id: UUID
    shop_domain: str
    scope: str
    is_admin: bool
    installed_at: datetime


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
