"""
FastAPI Dependencies - Authentication, webhook verification and services.

NO DICTIONARIES - All dependencies return typed objects.
"""

import hmac

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.config import settings
from sections_stack.db.session import get_write_db
from sections_stack.exceptions import (
    AuthenticationError,
    StoreUnavailableError,
    WebhookVerificationError,
)
from sections_stack.models.domain import ShopAccount
from sections_stack.observability.logging import get_logger
from sections_stack.services.billing_events import BillingEventNormalizer
from sections_stack.services.catalog import CatalogService
from sections_stack.services.entitlements import SqlEntitlementStore
from sections_stack.services.reconciliation import BillingEventProcessor, ReconciliationEngine
from sections_stack.services.shopify_api import ShopifyApiClient
from sections_stack.services.shopify_auth import verify_session_token, verify_webhook_hmac
from sections_stack.services.shops import ShopService

logger = get_logger(__name__)

# Bearer token scheme for session tokens and the internal token
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# Merchant authentication (Shopify session token)
# ============================================================================


async def get_current_shop(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_write_db),
) -> ShopAccount:
    """
    Resolve the installed shop from the App Bridge session token.

    Usage:
        @router.get("/api/my-sections")
        async def my_sections(shop: ShopAccount = Depends(get_current_shop)):
            ...

    Raises:
        HTTPException 401 if the token is missing/invalid or the shop is not installed
        HTTPException 503 if the shop lookup hits an unavailable store
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = verify_session_token(credentials.credentials)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    try:
        shop = await ShopService(db).find_shop_by_domain(claims.shop_domain)
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        ) from exc

    if shop is None:
        logger.warning("session_token_for_unknown_shop", shop_domain=claims.shop_domain)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Shop is not installed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return shop


async def require_admin_shop(shop: ShopAccount = Depends(get_current_shop)) -> ShopAccount:
    """Only shops flagged as catalog admins may manage sections."""
    if not shop.is_admin:
        logger.warning("admin_access_denied", shop_domain=shop.shop_domain)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return shop


# ============================================================================
# Internal API (platform integration layer)
# ============================================================================


def require_internal_api_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """
    Bearer check against INTERNAL_API_TOKEN.

    Raises:
        HTTPException 401 if missing, 403 if wrong or not configured
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    expected = settings.internal_api_token
    if not expected or not hmac.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid internal API token",
        )


# ============================================================================
# Webhooks
# ============================================================================


async def verified_webhook_body(
    request: Request,
    x_shopify_hmac_sha256: str | None = Header(None),
) -> bytes:
    """
    Raw webhook body after HMAC verification.

    Raises:
        HTTPException 401 if the HMAC header is missing or wrong
    """
    body = await request.body()
    try:
        verify_webhook_hmac(body, x_shopify_hmac_sha256)
    except WebhookVerificationError as exc:
        logger.warning("webhook_verification_failed", path=request.url.path, error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook verification failed",
        ) from exc
    return body


# ============================================================================
# Services
# ============================================================================


def get_billing_event_processor(
    db: AsyncSession = Depends(get_write_db),
) -> BillingEventProcessor:
    """Processor wired to the request's write session."""
    return BillingEventProcessor(
        normalizer=BillingEventNormalizer(CatalogService(db)),
        engine=ReconciliationEngine(ShopService(db), SqlEntitlementStore(db)),
        retry_attempts=settings.store_retry_attempts,
        retry_backoff_seconds=settings.store_retry_backoff_seconds,
    )


def get_shopify_client() -> ShopifyApiClient:
    """Shopify Admin API client."""
    return ShopifyApiClient()
