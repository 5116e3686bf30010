"""
API Routes - Merchant-facing endpoints (embedded admin).

NO DICTIONARIES - All requests/responses use Pydantic models.
Every route authenticates with the App Bridge session token.
"""

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.api.dependencies import (
    get_billing_event_processor,
    get_current_shop,
    get_shopify_client,
)
from sections_stack.config import settings
from sections_stack.db.session import get_write_db
from sections_stack.exceptions import (
    EntitlementRequiredError,
    SectionContentNotFoundError,
    SectionNotFoundError,
    ShopifyApiError,
    StoreUnavailableError,
)
from sections_stack.models.api import (
    MySectionsResponse,
    OwnedSectionResponse,
    PublishSectionRequest,
    PublishSectionResponse,
    PurchaseSectionResponse,
    SectionListResponse,
    SectionResponse,
    ThemeListResponse,
    ThemeResponse,
)
from sections_stack.models.domain import FreeGrantSignal, SectionData, ShopAccount
from sections_stack.observability.logging import get_logger
from sections_stack.services.billing_events import charge_name_for
from sections_stack.services.catalog import CatalogService
from sections_stack.services.entitlements import SqlEntitlementStore
from sections_stack.services.reconciliation import BillingEventProcessor
from sections_stack.services.shopify_api import ShopifyApiClient
from sections_stack.services.theme_publisher import ThemePublisher

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["sections"])


def section_response(section: SectionData) -> SectionResponse:
    """Convert a domain section to its API representation."""
    return SectionResponse(
        id=section.section_id,
        name=section.name,
        identifier=section.identifier,
        description=section.description,
        detailed_features=list(section.detailed_features),
        category=section.category,
        tags=list(section.tags),
        thumbnail_url=section.thumbnail_url,
        image_gallery=list(section.image_gallery),
        price=section.price,
        is_free=section.is_free,
        is_popular=section.is_popular,
        is_trending=section.is_trending,
        is_featured=section.is_featured,
        download_count=section.download_count,
        rating=section.rating,
        demo_url=section.demo_url,
        created_at=section.created_at,
        updated_at=section.updated_at,
    )


def store_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Service temporarily unavailable",
    )


def purchase_return_url(section_id: str, shop_domain: str) -> str:
    """Where Shopify sends the merchant after approving the charge."""
    query = urlencode({"sectionId": section_id, "shop": shop_domain})
    return f"{settings.app_base_url}/app/purchase/callback?{query}"


# ============================================================================
# Catalog
# ============================================================================


@router.get("/sections", response_model=SectionListResponse)
async def list_sections(
    category: str = Query("all", max_length=50),
    search: str = Query("", max_length=200),
    db: AsyncSession = Depends(get_write_db),
    shop: ShopAccount = Depends(get_current_shop),
) -> SectionListResponse:
    """Storefront listing, newest first."""
    try:
        sections = await CatalogService(db).list_sections(category, search)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown category filter: {category}",
        ) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    return SectionListResponse(
        sections=[section_response(s) for s in sections],
        category=category,
        search=search,
    )


@router.get("/sections/{section_id}", response_model=SectionResponse)
async def get_section(
    section_id: str,
    db: AsyncSession = Depends(get_write_db),
    shop: ShopAccount = Depends(get_current_shop),
) -> SectionResponse:
    """Section detail."""
    try:
        section = await CatalogService(db).get_section(section_id)
    except SectionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Section not found",
        ) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    return section_response(section)


# ============================================================================
# Purchases
# ============================================================================


@router.post("/sections/{section_id}/purchase", response_model=PurchaseSectionResponse)
async def purchase_section(
    section_id: str,
    db: AsyncSession = Depends(get_write_db),
    shop: ShopAccount = Depends(get_current_shop),
    processor: BillingEventProcessor = Depends(get_billing_event_processor),
    shopify: ShopifyApiClient = Depends(get_shopify_client),
) -> PurchaseSectionResponse:
    """
    Buy a section.

    Free sections are granted immediately. Paid sections return the Shopify
    confirmation URL the merchant must approve; the entitlement is written
    when the callback or webhook arrives. Sections already owned are not
    charged again.
    """
    try:
        section = await CatalogService(db).get_section(section_id)
        existing = await SqlEntitlementStore(db).find_entitlement(shop.shop_id, section_id)
    except SectionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Section not found",
        ) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    if existing is not None and existing.is_active:
        return PurchaseSectionResponse(granted=True)

    if section.is_free:
        try:
            result = await processor.process(
                FreeGrantSignal(shop_domain=shop.shop_domain, section_id=section_id)
            )
        except StoreUnavailableError as exc:
            raise store_unavailable() from exc

        if not result.reconciled:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Free grant not recorded: {result.outcome.value}",
            )
        return PurchaseSectionResponse(granted=True)

    try:
        confirmation_url = await shopify.create_one_time_purchase(
            shop_domain=shop.shop_domain,
            access_token=shop.access_token,
            name=charge_name_for(section.name, section.section_id),
            amount=section.price,
            currency=settings.billing_currency,
            return_url=purchase_return_url(section.section_id, shop.shop_domain),
            test=settings.shopify_billing_test_mode,
        )
    except ShopifyApiError as exc:
        logger.error(
            "purchase_creation_failed",
            shop_domain=shop.shop_domain,
            section_id=section_id,
            error=exc.message,
        )
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    return PurchaseSectionResponse(confirmation_url=confirmation_url)


@router.get("/my-sections", response_model=MySectionsResponse)
async def my_sections(
    db: AsyncSession = Depends(get_write_db),
    shop: ShopAccount = Depends(get_current_shop),
) -> MySectionsResponse:
    """Sections the shop owns, newest grant first."""
    try:
        owned = await SqlEntitlementStore(db).list_entitlements_for_shop(shop.shop_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    return MySectionsResponse(
        sections=[
            OwnedSectionResponse(
                entitlement_id=item.entitlement.entitlement_id,
                charge_id=item.entitlement.charge_id,
                status=item.entitlement.status,
                granted_at=item.entitlement.granted_at,
                section=section_response(item.section),
            )
            for item in owned
        ]
    )


# ============================================================================
# Themes
# ============================================================================


@router.get("/themes", response_model=ThemeListResponse)
async def list_themes(
    shop: ShopAccount = Depends(get_current_shop),
    shopify: ShopifyApiClient = Depends(get_shopify_client),
) -> ThemeListResponse:
    """Themes of the merchant's store."""
    try:
        themes = await shopify.list_themes(
            shop_domain=shop.shop_domain, access_token=shop.access_token
        )
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    return ThemeListResponse(
        themes=[ThemeResponse(id=t.theme_id, name=t.name, role=t.role) for t in themes]
    )


@router.post("/sections/{section_id}/publish", response_model=PublishSectionResponse)
async def publish_section(
    section_id: str,
    request: PublishSectionRequest,
    db: AsyncSession = Depends(get_write_db),
    shop: ShopAccount = Depends(get_current_shop),
    shopify: ShopifyApiClient = Depends(get_shopify_client),
) -> PublishSectionResponse:
    """Add an owned section to one of the merchant's themes."""
    publisher = ThemePublisher(CatalogService(db), SqlEntitlementStore(db), shopify)

    try:
        result = await publisher.publish(shop, section_id, request.theme_id)
    except EntitlementRequiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Section must be purchased before it can be added to a theme",
        ) from exc
    except SectionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Section not found",
        ) from exc
    except SectionContentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Section content not found",
        ) from exc
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    return PublishSectionResponse(
        section_id=result.section_id,
        theme_id=result.theme_id,
        filenames=result.filenames,
    )
