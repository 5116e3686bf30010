"""
Billing Event Normalizer - One canonical event from every purchase signal.

Shopify tells us about one-time purchases in several shapes: the redirect back
from the approval page, and webhooks whose charge name either embeds the
section id or carries the section's display name. Free grants are synthesized
in-process. All of them become a BillingEvent; anything that cannot becomes a
typed error.
"""

import re

from sections_stack.exceptions import (
    InactiveChargeError,
    MalformedReferenceError,
    SectionNotFoundError,
    UnknownShopError,
)
from sections_stack.models.api import ChargeStatus, EntitlementStatus
from sections_stack.models.domain import (
    FREE_CHARGE_ID,
    BillingEvent,
    BillingSignal,
    EmbeddedIdWebhookSignal,
    FreeGrantSignal,
    NamedWebhookSignal,
    RedirectCallbackSignal,
    is_section_id,
)
from sections_stack.services.catalog import SectionCatalog
from sections_stack.services.shops import canonical_shop_domain

SECTION_ID_MARKER = "sectionId="
SECTION_ID_IN_NAME = re.compile(r"sectionId=([0-9a-f]{24})(?![0-9a-zA-Z])")
NAMED_CHARGE_PREFIX = "Purchase section: "
CHARGE_GID_PREFIX = "gid://shopify/AppPurchaseOneTime/"

_GRANTING_STATUSES = {
    ChargeStatus.ACTIVE.value: EntitlementStatus.ACTIVE,
    ChargeStatus.PENDING.value: EntitlementStatus.PENDING,
}


def charge_name_for(section_name: str, section_id: str) -> str:
    """Charge name used when creating a purchase; carries both references."""
    return f"{NAMED_CHARGE_PREFIX}{section_name} ({SECTION_ID_MARKER}{section_id})"


def canonical_charge_id(raw_charge_id: str) -> str:
    """Numeric ids become AppPurchaseOneTime GIDs; GIDs and FREE are kept."""
    charge_id = raw_charge_id.strip()
    if charge_id.isdigit():
        return f"{CHARGE_GID_PREFIX}{charge_id}"
    return charge_id


def map_charge_status(charge_id: str, status: str) -> EntitlementStatus:
    """
    Map a Shopify charge status onto an entitlement status.

    Raises:
        InactiveChargeError: DECLINED, EXPIRED or any other non-granting status
    """
    mapped = _GRANTING_STATUSES.get(status.strip().upper())
    if mapped is None:
        raise InactiveChargeError(charge_id, status)
    return mapped


def extract_section_id(charge_name: str) -> str:
    """
    Section id embedded as sectionId=<24 hex chars>.

    Raises:
        MalformedReferenceError: no well-formed id in the name
    """
    match = SECTION_ID_IN_NAME.search(charge_name)
    if match is None:
        raise MalformedReferenceError(charge_name)
    return match.group(1)


def extract_display_name(charge_name: str) -> str:
    """
    Display name from "Purchase section: <name>".

    Raises:
        MalformedReferenceError: prefix missing or name empty
    """
    if not charge_name.startswith(NAMED_CHARGE_PREFIX):
        raise MalformedReferenceError(charge_name)
    display_name = charge_name[len(NAMED_CHARGE_PREFIX) :].strip()
    if not display_name:
        raise MalformedReferenceError(charge_name)
    return display_name


def classify_webhook(
    shop_domain: str, charge_name: str, charge_id: str, status: str
) -> EmbeddedIdWebhookSignal | NamedWebhookSignal:
    """
    Pick the webhook variant from the charge name.

    An embedded sectionId marker takes precedence over the display-name form,
    so names carrying both resolve by id.
    """
    if SECTION_ID_MARKER in charge_name:
        return EmbeddedIdWebhookSignal(
            shop_domain=shop_domain, charge_name=charge_name, charge_id=charge_id, status=status
        )
    if charge_name.startswith(NAMED_CHARGE_PREFIX):
        return NamedWebhookSignal(
            shop_domain=shop_domain, charge_name=charge_name, charge_id=charge_id, status=status
        )
    raise MalformedReferenceError(charge_name)


class BillingEventNormalizer:
    """Turns billing signals into canonical BillingEvents (catalog reads only)."""

    def __init__(self, catalog: SectionCatalog) -> None:
        self.catalog = catalog

    async def normalize(self, signal: BillingSignal) -> BillingEvent:
        """
        Normalize one signal.

        Raises:
            UnknownShopError: the signal carries no shop domain
            MalformedReferenceError: no section reference can be parsed
            SectionNotFoundError: the reference resolves to no section
            AmbiguousSectionNameError: the display name matches several sections
            InactiveChargeError: the charge status grants nothing
        """
        shop_domain = canonical_shop_domain(signal.shop_domain)
        if not shop_domain:
            raise UnknownShopError(signal.shop_domain)

        if isinstance(signal, FreeGrantSignal):
            section_id = await self._resolve_id(signal.section_id.strip())
            return BillingEvent(
                shop_domain=shop_domain,
                section_id=section_id,
                charge_id=FREE_CHARGE_ID,
                status=EntitlementStatus.ACTIVE,
            )

        charge_id = canonical_charge_id(signal.charge_id)
        if not charge_id:
            raise MalformedReferenceError(signal.charge_id)

        if isinstance(signal, RedirectCallbackSignal):
            reference = signal.section_id.strip()
            status = map_charge_status(charge_id, signal.status)
            section_id = await self._resolve_id(reference)
        elif isinstance(signal, EmbeddedIdWebhookSignal):
            reference = extract_section_id(signal.charge_name)
            status = map_charge_status(charge_id, signal.status)
            section_id = await self._resolve_id(reference)
        elif isinstance(signal, NamedWebhookSignal):
            display_name = extract_display_name(signal.charge_name)
            status = map_charge_status(charge_id, signal.status)
            section = await self.catalog.find_section_by_display_name(display_name)
            if section is None:
                raise SectionNotFoundError(display_name)
            section_id = section.section_id
        else:
            raise TypeError(f"Unsupported billing signal: {type(signal).__name__}")

        return BillingEvent(
            shop_domain=shop_domain,
            section_id=section_id,
            charge_id=charge_id,
            status=status,
        )

    async def _resolve_id(self, reference: str) -> str:
        if not is_section_id(reference):
            raise MalformedReferenceError(reference)
        section = await self.catalog.find_section_by_id(reference)
        if section is None:
            raise SectionNotFoundError(reference)
        return section.section_id
