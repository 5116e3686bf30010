"""
Billing callback and Shopify webhook routes.

The redirect callback never exposes error detail: any failure sends the
merchant to the generic purchase-failed page. Webhooks are acknowledged with
200 for every handled outcome so Shopify stops redelivering; only an
unavailable store answers 503, which makes Shopify retry later.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.api.dependencies import (
    get_billing_event_processor,
    get_shopify_client,
    verified_webhook_body,
)
from sections_stack.config import settings
from sections_stack.db.session import get_write_db
from sections_stack.exceptions import (
    MalformedReferenceError,
    ShopifyApiError,
    StoreUnavailableError,
)
from sections_stack.models.api import WebhookAckResponse
from sections_stack.models.domain import RedirectCallbackSignal
from sections_stack.models.shopify import (
    AppPurchaseOneTimePayload,
    AppScopesUpdatePayload,
    AppUninstalledPayload,
)
from sections_stack.observability.logging import get_logger
from sections_stack.observability.metrics import metrics
from sections_stack.services.billing_events import canonical_charge_id, classify_webhook
from sections_stack.services.reconciliation import BillingEventProcessor, ProcessingOutcome
from sections_stack.services.shopify_api import ShopifyApiClient
from sections_stack.services.shops import ShopService, canonical_shop_domain

logger = get_logger(__name__)
router = APIRouter(tags=["billing"])

THANK_YOU_PATH = "/app/thank-you?purchased=true"
PURCHASE_FAILED_PATH = "/app/purchase-failed"


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.app_base_url}{path}", status_code=status.HTTP_303_SEE_OTHER)


# ============================================================================
# Redirect callback
# ============================================================================


@router.get("/app/purchase/callback", response_class=RedirectResponse)
async def purchase_callback(
    charge_id: str | None = Query(None, max_length=255),
    section_id: str | None = Query(None, alias="sectionId", max_length=64),
    shop: str | None = Query(None, max_length=255),
    db: AsyncSession = Depends(get_write_db),
    processor: BillingEventProcessor = Depends(get_billing_event_processor),
    shopify: ShopifyApiClient = Depends(get_shopify_client),
) -> RedirectResponse:
    """
    Merchant returns from Shopify's charge approval page.

    The charge status is confirmed with Shopify before anything is recorded;
    the query string alone is never trusted.
    """
    if not charge_id or not section_id or not shop:
        logger.warning(
            "purchase_callback_missing_params",
            has_charge_id=bool(charge_id),
            has_section_id=bool(section_id),
            has_shop=bool(shop),
        )
        return _redirect(PURCHASE_FAILED_PATH)

    shop_domain = canonical_shop_domain(shop)
    charge_gid = canonical_charge_id(charge_id)

    try:
        shop_account = await ShopService(db).find_shop_by_domain(shop_domain)
    except StoreUnavailableError:
        return _redirect(PURCHASE_FAILED_PATH)

    if shop_account is None:
        logger.warning("unknown_shop_skipped", shop_domain=shop_domain, charge_id=charge_gid)
        metrics.record_billing_event(RedirectCallbackSignal.variant, ProcessingOutcome.UNKNOWN_SHOP.value, 0.0)
        return _redirect(PURCHASE_FAILED_PATH)

    try:
        charge_status = await shopify.get_one_time_purchase_status(
            shop_domain=shop_account.shop_domain,
            access_token=shop_account.access_token,
            charge_gid=charge_gid,
        )
    except ShopifyApiError as exc:
        logger.error(
            "charge_status_confirmation_failed",
            shop_domain=shop_domain,
            charge_id=charge_gid,
            error=exc.message,
        )
        return _redirect(PURCHASE_FAILED_PATH)

    signal = RedirectCallbackSignal(
        shop_domain=shop_domain,
        section_id=section_id,
        charge_id=charge_gid,
        status=charge_status,
    )
    try:
        result = await processor.process(signal)
    except StoreUnavailableError:
        return _redirect(PURCHASE_FAILED_PATH)

    if result.reconciled and result.entitlement is not None and result.entitlement.is_active:
        return _redirect(THANK_YOU_PATH)
    return _redirect(PURCHASE_FAILED_PATH)


# ============================================================================
# Webhooks
# ============================================================================


@router.post("/webhooks/app/purchase-update", response_model=WebhookAckResponse)
async def purchase_update_webhook(
    body: bytes = Depends(verified_webhook_body),
    x_shopify_shop_domain: str | None = Header(None),
    processor: BillingEventProcessor = Depends(get_billing_event_processor),
) -> WebhookAckResponse:
    """APP_PURCHASES_ONE_TIME_UPDATE: record or refresh the entitlement."""
    try:
        payload = AppPurchaseOneTimePayload.model_validate_json(body)
    except ValidationError as exc:
        logger.error("purchase_webhook_payload_invalid", errors=exc.error_count())
        metrics.record_error("ValidationError", "purchase_update_webhook")
        return WebhookAckResponse(outcome="invalid_payload")

    shop_domain = x_shopify_shop_domain or payload.shop_domain or ""

    try:
        signal = classify_webhook(
            shop_domain=shop_domain,
            charge_name=payload.name,
            charge_id=payload.charge_id,
            status=payload.status,
        )
    except MalformedReferenceError as exc:
        logger.error(
            "malformed_section_reference",
            shop_domain=shop_domain,
            raw_reference=exc.raw_reference,
        )
        metrics.record_billing_event("webhook_unclassified", ProcessingOutcome.MALFORMED_REFERENCE.value, 0.0)
        return WebhookAckResponse(outcome=ProcessingOutcome.MALFORMED_REFERENCE.value)

    try:
        result = await processor.process(signal)
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        ) from exc

    return WebhookAckResponse(outcome=result.outcome.value)


@router.post("/webhooks/app/uninstalled", response_model=WebhookAckResponse)
async def app_uninstalled_webhook(
    body: bytes = Depends(verified_webhook_body),
    x_shopify_shop_domain: str | None = Header(None),
    db: AsyncSession = Depends(get_write_db),
) -> WebhookAckResponse:
    """APP_UNINSTALLED: tombstone the shop account."""
    shop_domain = x_shopify_shop_domain
    if not shop_domain:
        try:
            payload = AppUninstalledPayload.model_validate_json(body)
        except ValidationError:
            payload = AppUninstalledPayload()
        shop_domain = payload.myshopify_domain or payload.domain

    if not shop_domain:
        logger.error("uninstall_webhook_missing_shop")
        return WebhookAckResponse(outcome="missing_shop")

    try:
        uninstalled = await ShopService(db).mark_uninstalled(shop_domain)
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        ) from exc

    return WebhookAckResponse(outcome="uninstalled" if uninstalled else "not_installed")


@router.post("/webhooks/app/scopes_update", response_model=WebhookAckResponse)
async def app_scopes_update_webhook(
    body: bytes = Depends(verified_webhook_body),
    x_shopify_shop_domain: str | None = Header(None),
    db: AsyncSession = Depends(get_write_db),
) -> WebhookAckResponse:
    """APP_SCOPES_UPDATE: keep the stored scope in step with the grant."""
    try:
        payload = AppScopesUpdatePayload.model_validate_json(body)
    except ValidationError as exc:
        logger.error("scopes_webhook_payload_invalid", errors=exc.error_count())
        metrics.record_error("ValidationError", "app_scopes_update_webhook")
        return WebhookAckResponse(outcome="invalid_payload")

    if not x_shopify_shop_domain:
        logger.error("scopes_webhook_missing_shop")
        return WebhookAckResponse(outcome="missing_shop")

    try:
        updated = await ShopService(db).update_scope(x_shopify_shop_domain, ",".join(payload.current))
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        ) from exc

    return WebhookAckResponse(outcome="scope_updated" if updated else "not_installed")
