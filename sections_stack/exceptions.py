"""
Exception Classes - Strongly typed exception hierarchy.

All exceptions carry typed attributes describing what failed.
"""

from uuid import UUID


class SectionsStackError(Exception):
    """Base exception for all Sections Stack errors."""

    pass


# ============================================================================
# Billing reconciliation (non-fatal at the event-handling boundary)
# ============================================================================


class UnknownShopError(SectionsStackError):
    """Raised when a billing event references a shop with no Shop Account."""

    def __init__(self, shop_domain: str) -> None:
        self.shop_domain = shop_domain
        super().__init__(f"Unknown shop: {shop_domain}")


class MalformedReferenceError(SectionsStackError):
    """Raised when no section reference can be parsed from a billing payload."""

    def __init__(self, raw_reference: str) -> None:
        self.raw_reference = raw_reference
        super().__init__(f"Unparseable section reference: {raw_reference!r}")


class SectionNotFoundError(SectionsStackError):
    """Raised when a section reference does not resolve to a catalog entry."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Section not found: {reference}")


class AmbiguousSectionNameError(SectionsStackError):
    """Raised when more than one section shares the looked-up display name."""

    def __init__(self, display_name: str, match_count: int) -> None:
        self.display_name = display_name
        self.match_count = match_count
        super().__init__(
            f"Section name {display_name!r} is ambiguous ({match_count} matches)"
        )


class InactiveChargeError(SectionsStackError):
    """Raised when a charge status does not grant an entitlement."""

    def __init__(self, charge_id: str, status: str) -> None:
        self.charge_id = charge_id
        self.status = status
        super().__init__(f"Charge {charge_id} has non-granting status {status}")


# ============================================================================
# Persistence
# ============================================================================


class StoreUnavailableError(SectionsStackError):
    """Raised when the persistence layer fails transiently."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Store unavailable during {operation}: {message}")


class WriteVerificationError(SectionsStackError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class SectionInUseError(SectionsStackError):
    """Raised when deleting a section that shops already own."""

    def __init__(self, section_id: str) -> None:
        self.section_id = section_id
        super().__init__(f"Section {section_id} has entitlements and cannot be deleted")


class SectionIdentifierConflictError(SectionsStackError):
    """Raised when another section already uses the identifier."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Section identifier already in use: {identifier}")


class SectionContentNotFoundError(SectionsStackError):
    """Raised when a section has no Liquid content stored."""

    def __init__(self, section_id: str) -> None:
        self.section_id = section_id
        super().__init__(f"No content stored for section {section_id}")


# ============================================================================
# Theme publishing
# ============================================================================


class EntitlementRequiredError(SectionsStackError):
    """Raised when a shop publishes a section it does not actively own."""

    def __init__(self, shop_id: UUID, section_id: str) -> None:
        self.shop_id = shop_id
        self.section_id = section_id
        super().__init__(f"Shop {shop_id} has no active entitlement for section {section_id}")


# ============================================================================
# Shopify platform
# ============================================================================


class ShopifyApiError(SectionsStackError):
    """Raised when a Shopify Admin API call fails."""

    def __init__(self, message: str, status_code: int = 502) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Shopify API error: {message}")


class WebhookVerificationError(SectionsStackError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(SectionsStackError):
    """Raised when authentication fails (invalid session token, invalid credentials)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
