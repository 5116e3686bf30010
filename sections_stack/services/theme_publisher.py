"""
Theme Publisher - Push an owned section into a merchant theme.
"""

from dataclasses import dataclass

from sections_stack.exceptions import EntitlementRequiredError, ShopifyApiError, StoreUnavailableError
from sections_stack.models.domain import ShopAccount
from sections_stack.observability.logging import get_logger
from sections_stack.observability.metrics import metrics
from sections_stack.services.catalog import CatalogService
from sections_stack.services.entitlements import EntitlementStore
from sections_stack.services.shopify_api import ShopifyApiClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class PublishResult:
    """Files written into the theme."""

    section_id: str
    theme_id: str
    filenames: list[str]


class ThemePublisher:
    """Uploads section Liquid to a theme for shops with an active entitlement."""

    def __init__(
        self,
        catalog: CatalogService,
        store: EntitlementStore,
        shopify: ShopifyApiClient,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.shopify = shopify

    async def publish(self, shop: ShopAccount, section_id: str, theme_id: str) -> PublishResult:
        """
        Upload sections/<identifier>.liquid into the theme.

        Raises:
            EntitlementRequiredError: no active entitlement for (shop, section)
            SectionNotFoundError: section does not exist
            SectionContentNotFoundError: section has no Liquid content
            ShopifyApiError: Shopify rejected the upload
        """
        entitlement = await self.store.find_entitlement(shop.shop_id, section_id)
        if entitlement is None or not entitlement.is_active:
            raise EntitlementRequiredError(shop.shop_id, section_id)

        section = await self.catalog.get_section(section_id)
        content = await self.catalog.get_section_content(section_id)

        try:
            filenames = await self.shopify.upsert_theme_file(
                shop_domain=shop.shop_domain,
                access_token=shop.access_token,
                theme_id=theme_id,
                filename=section.liquid_filename,
                body=content,
            )
        except ShopifyApiError:
            metrics.record_theme_publish(success=False)
            raise

        metrics.record_theme_publish(success=True)

        # Upload already succeeded
        try:
            await self.catalog.record_download(section_id)
        except StoreUnavailableError as exc:
            logger.warning(
                "download_count_not_recorded",
                shop_domain=shop.shop_domain,
                section_id=section_id,
                error=exc.message,
            )
            metrics.record_error("StoreUnavailableError", "record_download")

        logger.info(
            "section_published",
            shop_domain=shop.shop_domain,
            section_id=section_id,
            theme_id=theme_id,
            filenames=filenames,
        )
        return PublishResult(section_id=section_id, theme_id=theme_id, filenames=filenames)
