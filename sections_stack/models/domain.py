"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.

Inbound purchase signals are a closed union of variants; the normalizer turns
each one into a single canonical BillingEvent.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sections_stack.models.api import EntitlementStatus, SectionCategory

SECTION_ID_PATTERN = re.compile(r"[0-9a-f]{24}")

# Charge id recorded for free grants
FREE_CHARGE_ID = "FREE"


def is_section_id(value: str) -> bool:
    """True if value is a well-formed section id (24 lowercase hex chars)."""
    return bool(SECTION_ID_PATTERN.fullmatch(value))


# ============================================================================
# Persistent entity snapshots
# ============================================================================


@dataclass(frozen=True)
class ShopAccount:
    """Immutable snapshot of an installed merchant store."""

    shop_id: UUID
    shop_domain: str
    access_token: str
    scope: str
    is_admin: bool
    installed_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        """Validate shop account fields."""
        if not self.shop_domain:
            raise ValueError("shop_domain cannot be empty")


@dataclass(frozen=True)
class SectionData:
    """Immutable catalog section snapshot."""

    section_id: str
    name: str
    identifier: str
    description: str
    detailed_features: tuple[str, ...]
    category: SectionCategory
    tags: tuple[str, ...]
    thumbnail_url: str
    image_gallery: tuple[str, ...]
    price: Decimal
    is_free: bool
    is_popular: bool
    is_trending: bool
    is_featured: bool
    download_count: int
    rating: float
    demo_url: str
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        """Validate section constraints."""
        if not is_section_id(self.section_id):
            raise ValueError(f"Invalid section id: {self.section_id}")
        if self.price < 0:
            raise ValueError(f"Price cannot be negative: {self.price}")
        if not 0 <= self.rating <= 5:
            raise ValueError(f"Rating must be between 0 and 5: {self.rating}")

    @property
    def liquid_filename(self) -> str:
        """Theme file name the section is published under."""
        return f"sections/{self.identifier}.liquid"


@dataclass(frozen=True)
class EntitlementData:
    """Immutable entitlement snapshot: a shop owns a section."""

    entitlement_id: UUID
    shop_id: UUID
    section_id: str
    charge_id: str
    status: EntitlementStatus
    granted_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == EntitlementStatus.ACTIVE


@dataclass(frozen=True)
class OwnedSection:
    """Entitlement joined with the section it grants ("My Sections")."""

    entitlement: EntitlementData
    section: SectionData


@dataclass(frozen=True)
class ThemeData:
    """A theme of a merchant store as reported by Shopify."""

    theme_id: str
    name: str
    role: str


# ============================================================================
# Billing signal variants
# ============================================================================


@dataclass(frozen=True)
class RedirectCallbackSignal:
    """Merchant returned from Shopify's charge approval page."""

    shop_domain: str
    section_id: str
    charge_id: str
    status: str

    variant = "redirect_callback"


@dataclass(frozen=True)
class EmbeddedIdWebhookSignal:
    """Webhook whose charge name embeds ``sectionId=<id>``."""

    shop_domain: str
    charge_name: str
    charge_id: str
    status: str

    variant = "webhook_embedded_id"


@dataclass(frozen=True)
class NamedWebhookSignal:
    """Webhook whose charge name is ``Purchase section: <Display Name>``."""

    shop_domain: str
    charge_name: str
    charge_id: str
    status: str

    variant = "webhook_named"


@dataclass(frozen=True)
class FreeGrantSignal:
    """Request to grant a free section without a Shopify charge."""

    shop_domain: str
    section_id: str

    variant = "free_grant"


BillingSignal = (
    RedirectCallbackSignal | EmbeddedIdWebhookSignal | NamedWebhookSignal | FreeGrantSignal
)


@dataclass(frozen=True)
class BillingEvent:
    """Canonical purchase event consumed by the reconciliation engine."""

    shop_domain: str
    section_id: str
    charge_id: str
    status: EntitlementStatus

    def __post_init__(self) -> None:
        """Validate canonical event fields."""
        if not self.shop_domain:
            raise ValueError("shop_domain cannot be empty")
        if not is_section_id(self.section_id):
            raise ValueError(f"Invalid section id: {self.section_id}")
        if not self.charge_id:
            raise ValueError("charge_id cannot be empty")

    @property
    def is_free_grant(self) -> bool:
        return self.charge_id == FREE_CHARGE_ID


@dataclass(frozen=True)
class ReconciliationResult:
    """Entitlement after reconciliation and whether it was newly created."""

    entitlement: EntitlementData
    created: bool
