"""
Shopify request verification - session tokens and webhook HMAC.

Both are signed with the app's API secret. Session tokens are the HS256 JWTs
App Bridge attaches to embedded-admin requests; webhooks carry a base64
HMAC-SHA256 of the raw body in X-Shopify-Hmac-Sha256.
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass
from urllib.parse import urlparse

import jwt

from sections_stack.config import settings
from sections_stack.exceptions import AuthenticationError, WebhookVerificationError
from sections_stack.observability.logging import get_logger
from sections_stack.services.shops import normalize_shop_domain

logger = get_logger(__name__)

# Clock skew tolerated between Shopify and this service
SESSION_TOKEN_LEEWAY_SECONDS = 10


@dataclass(frozen=True)
class SessionTokenClaims:
    """Verified claims of a Shopify session token."""

    shop_domain: str
    user_id: str | None
    session_id: str | None


def verify_session_token(
    token: str,
    api_secret: str | None = None,
    api_key: str | None = None,
) -> SessionTokenClaims:
    """
    Verify a session token and return the shop it was issued for.

    Raises:
        AuthenticationError: bad signature, expired, wrong audience, or no shop
    """
    secret = api_secret or settings.shopify_api_secret
    audience = api_key if api_key is not None else settings.shopify_api_key

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience or None,
            leeway=SESSION_TOKEN_LEEWAY_SECONDS,
            options={"require": ["exp", "dest"], "verify_aud": bool(audience)},
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("session_token_expired")
        raise AuthenticationError("Session token expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("session_token_invalid", error=str(e))
        raise AuthenticationError(f"Invalid session token: {e}") from e

    dest_host = urlparse(str(payload.get("dest", ""))).hostname or ""
    try:
        shop_domain = normalize_shop_domain(dest_host)
    except ValueError as e:
        raise AuthenticationError("Session token has no valid shop destination") from e

    iss = payload.get("iss")
    if iss and urlparse(str(iss)).hostname != shop_domain:
        raise AuthenticationError("Session token issuer does not match destination")

    sub = payload.get("sub")
    sid = payload.get("sid")
    return SessionTokenClaims(
        shop_domain=shop_domain,
        user_id=str(sub) if sub else None,
        session_id=str(sid) if sid else None,
    )


def compute_webhook_hmac(body: bytes, api_secret: str | None = None) -> str:
    """Base64 HMAC-SHA256 of a webhook body."""
    secret = api_secret or settings.shopify_api_secret
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_hmac(body: bytes, supplied_hmac: str | None, api_secret: str | None = None) -> None:
    """
    Check X-Shopify-Hmac-Sha256 against the raw body.

    Raises:
        WebhookVerificationError: header missing or digest mismatch
    """
    if not supplied_hmac:
        raise WebhookVerificationError("Missing X-Shopify-Hmac-Sha256 header")
    expected = compute_webhook_hmac(body, api_secret)
    if not hmac.compare_digest(expected, supplied_hmac.strip()):
        raise WebhookVerificationError("HMAC digest mismatch")
