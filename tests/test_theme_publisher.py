"""
Tests for the Theme Publisher.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from sections_stack.exceptions import EntitlementRequiredError, ShopifyApiError, StoreUnavailableError
from sections_stack.models.api import EntitlementStatus
from sections_stack.models.domain import SectionData, ShopAccount
from sections_stack.services.theme_publisher import ThemePublisher
from tests.fakes import PAID_SECTION_ID, InMemoryEntitlementStore

THEME_ID = "gid://shopify/OnlineStoreTheme/1"


@pytest.fixture
def catalog_service(paid_section: SectionData) -> MagicMock:
    catalog = MagicMock()
    catalog.get_section = AsyncMock(return_value=paid_section)
    catalog.get_section_content = AsyncMock(return_value="<div>hero</div>")
    catalog.record_download = AsyncMock()
    return catalog


@pytest.fixture
def shopify() -> MagicMock:
    client = MagicMock()
    client.upsert_theme_file = AsyncMock(return_value=["sections/hero-banner.liquid"])
    return client


async def _grant(store: InMemoryEntitlementStore, shop: ShopAccount, status: EntitlementStatus):
    await store.create_entitlement(shop.shop_id, PAID_SECTION_ID, "gid://shopify/AppPurchaseOneTime/1", status)


class TestPublish:
    async def test_publishes_owned_section(
        self,
        shop_account: ShopAccount,
        store: InMemoryEntitlementStore,
        catalog_service: MagicMock,
        shopify: MagicMock,
    ):
        await _grant(store, shop_account, EntitlementStatus.ACTIVE)

        result = await ThemePublisher(catalog_service, store, shopify).publish(
            shop_account, PAID_SECTION_ID, THEME_ID
        )

        assert result.filenames == ["sections/hero-banner.liquid"]
        assert result.theme_id == THEME_ID
        shopify.upsert_theme_file.assert_awaited_once_with(
            shop_domain=shop_account.shop_domain,
            access_token=shop_account.access_token,
            theme_id=THEME_ID,
            filename="sections/hero-banner.liquid",
            body="<div>hero</div>",
        )
        catalog_service.record_download.assert_awaited_once_with(PAID_SECTION_ID)

    async def test_requires_entitlement(
        self,
        shop_account: ShopAccount,
        store: InMemoryEntitlementStore,
        catalog_service: MagicMock,
        shopify: MagicMock,
    ):
        with pytest.raises(EntitlementRequiredError):
            await ThemePublisher(catalog_service, store, shopify).publish(
                shop_account, PAID_SECTION_ID, THEME_ID
            )

        shopify.upsert_theme_file.assert_not_awaited()

    async def test_pending_entitlement_is_not_enough(
        self,
        shop_account: ShopAccount,
        store: InMemoryEntitlementStore,
        catalog_service: MagicMock,
        shopify: MagicMock,
    ):
        await _grant(store, shop_account, EntitlementStatus.PENDING)

        with pytest.raises(EntitlementRequiredError):
            await ThemePublisher(catalog_service, store, shopify).publish(
                shop_account, PAID_SECTION_ID, THEME_ID
            )

    async def test_shopify_failure_does_not_count_download(
        self,
        shop_account: ShopAccount,
        store: InMemoryEntitlementStore,
        catalog_service: MagicMock,
        shopify: MagicMock,
    ):
        await _grant(store, shop_account, EntitlementStatus.ACTIVE)
        shopify.upsert_theme_file = AsyncMock(side_effect=ShopifyApiError("Locked", status_code=400))

        with pytest.raises(ShopifyApiError):
            await ThemePublisher(catalog_service, store, shopify).publish(
                shop_account, PAID_SECTION_ID, THEME_ID
            )

        catalog_service.record_download.assert_not_awaited()

    async def test_download_counter_failure_still_publishes(
        self,
        shop_account: ShopAccount,
        store: InMemoryEntitlementStore,
        catalog_service: MagicMock,
        shopify: MagicMock,
    ):
        await _grant(store, shop_account, EntitlementStatus.ACTIVE)
        catalog_service.record_download = AsyncMock(
            side_effect=StoreUnavailableError("record_download", "pool timeout")
        )

        result = await ThemePublisher(catalog_service, store, shopify).publish(
            shop_account, PAID_SECTION_ID, THEME_ID
        )

        assert result.filenames == ["sections/hero-banner.liquid"]
        shopify.upsert_theme_file.assert_awaited_once()
