"""
Shopify Admin API Client - One-time purchases and theme files.

Thin async wrapper over the Admin GraphQL endpoint. GraphQL errors, HTTP
errors, network errors and malformed bodies raise ShopifyApiError; mutation
userErrors raise ShopifyApiError with status 400.
"""

import time
from decimal import Decimal
from typing import Any

import httpx

from sections_stack.config import settings
from sections_stack.exceptions import ShopifyApiError
from sections_stack.models.domain import ThemeData
from sections_stack.observability.logging import get_logger
from sections_stack.observability.metrics import metrics

logger = get_logger(__name__)

CREATE_ONE_TIME_PURCHASE = """
mutation AppPurchaseOneTimeCreate(
    $name: String!
    $price: MoneyInput!
    $returnUrl: URL!
    $test: Boolean
) {
    appPurchaseOneTimeCreate(name: $name, returnUrl: $returnUrl, price: $price, test: $test) {
        appPurchaseOneTime {
            id
            status
        }
        confirmationUrl
        userErrors {
            field
            message
        }
    }
}
"""

ONE_TIME_PURCHASE_STATUS = """
query AppPurchaseOneTimeStatus($id: ID!) {
    node(id: $id) {
        ... on AppPurchaseOneTime {
            id
            name
            status
        }
    }
}
"""

LIST_THEMES = """
query ListThemes {
    themes(first: 50) {
        nodes {
            id
            name
            role
        }
    }
}
"""

UPSERT_THEME_FILES = """
mutation ThemeFilesUpsert($themeId: ID!, $files: [OnlineStoreThemeFilesUpsertFileInput!]!) {
    themeFilesUpsert(themeId: $themeId, files: $files) {
        upsertedThemeFiles {
            filename
        }
        userErrors {
            field
            message
        }
    }
}
"""


def _user_error_message(user_errors: list[dict[str, Any]]) -> str:
    return "; ".join(str(error.get("message")) for error in user_errors)


class ShopifyApiClient:
    """Admin GraphQL client; one short-lived httpx client per call."""

    def __init__(
        self,
        api_version: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._api_version = api_version or settings.shopify_admin_api_version
        self._timeout = timeout_seconds or settings.shopify_request_timeout_seconds

    async def create_one_time_purchase(
        self,
        *,
        shop_domain: str,
        access_token: str,
        name: str,
        amount: Decimal,
        currency: str,
        return_url: str,
        test: bool,
    ) -> str:
        """Create an AppPurchaseOneTime; returns the merchant confirmation URL."""
        payload = {
            "query": CREATE_ONE_TIME_PURCHASE,
            "variables": {
                "name": name,
                "price": {"amount": str(amount), "currencyCode": currency},
                "returnUrl": return_url,
                "test": test,
            },
        }
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
            operation="create_one_time_purchase",
        )
        create_data = data.get("appPurchaseOneTimeCreate") or {}
        user_errors = create_data.get("userErrors") or []
        if user_errors:
            raise ShopifyApiError(
                f"One-time purchase creation failed: {_user_error_message(user_errors)}",
                status_code=400,
            )
        confirmation_url = create_data.get("confirmationUrl")
        if not isinstance(confirmation_url, str) or not confirmation_url:
            raise ShopifyApiError("One-time purchase creation returned no confirmationUrl")

        purchase = create_data.get("appPurchaseOneTime") or {}
        logger.info(
            "one_time_purchase_created",
            shop_domain=shop_domain,
            charge_id=purchase.get("id"),
            amount=str(amount),
            currency=currency,
            test=test,
        )
        return confirmation_url

    async def get_one_time_purchase_status(
        self, *, shop_domain: str, access_token: str, charge_gid: str
    ) -> str:
        """Current status of a one-time purchase (ACTIVE, PENDING, DECLINED, ...)."""
        payload = {"query": ONE_TIME_PURCHASE_STATUS, "variables": {"id": charge_gid}}
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
            operation="get_one_time_purchase_status",
        )
        node = data.get("node")
        if not isinstance(node, dict):
            raise ShopifyApiError(f"One-time purchase {charge_gid} not found", status_code=404)
        status = node.get("status")
        if not isinstance(status, str) or not status:
            raise ShopifyApiError(f"One-time purchase {charge_gid} has no status")
        return status

    async def list_themes(self, *, shop_domain: str, access_token: str) -> list[ThemeData]:
        """Themes of the store (first 50)."""
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={"query": LIST_THEMES},
            operation="list_themes",
        )
        nodes = (data.get("themes") or {}).get("nodes") or []
        themes: list[ThemeData] = []
        for node in nodes:
            if not isinstance(node, dict) or not node.get("id"):
                continue
            themes.append(
                ThemeData(
                    theme_id=str(node["id"]),
                    name=str(node.get("name") or ""),
                    role=str(node.get("role") or "").lower(),
                )
            )
        return themes

    async def upsert_theme_file(
        self,
        *,
        shop_domain: str,
        access_token: str,
        theme_id: str,
        filename: str,
        body: str,
    ) -> list[str]:
        """Write one text file into a theme; returns the upserted filenames."""
        payload = {
            "query": UPSERT_THEME_FILES,
            "variables": {
                "themeId": theme_id,
                "files": [{"filename": filename, "body": {"type": "TEXT", "value": body}}],
            },
        }
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
            operation="upsert_theme_file",
        )
        upsert_data = data.get("themeFilesUpsert") or {}
        user_errors = upsert_data.get("userErrors") or []
        if user_errors:
            raise ShopifyApiError(
                f"Theme file upload failed: {_user_error_message(user_errors)}",
                status_code=400,
            )
        files = upsert_data.get("upsertedThemeFiles") or []
        filenames = [str(f["filename"]) for f in files if isinstance(f, dict) and f.get("filename")]
        if not filenames:
            raise ShopifyApiError(f"Theme file upload for {filename} returned no files")
        return filenames

    # ========================================================================
    # Transport
    # ========================================================================

    async def _admin_graphql(
        self,
        *,
        shop_domain: str,
        access_token: str,
        payload: dict[str, Any],
        operation: str,
    ) -> dict[str, Any]:
        url = f"https://{shop_domain}/admin/api/{self._api_version}/graphql.json"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        }
        start_time = time.perf_counter()
        success = False
        try:
            response = await self._post_json(url=url, payload=payload, headers=headers)
            errors = response.get("errors")
            if errors:
                raise ShopifyApiError(f"Admin GraphQL errors: {errors}")
            data = response.get("data")
            if not isinstance(data, dict):
                raise ShopifyApiError("Admin GraphQL response is missing data")
            success = True
            return data
        finally:
            metrics.record_shopify_call(operation, success, time.perf_counter() - start_time)

    async def _post_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise ShopifyApiError(f"Network error while calling Shopify: {exc}") from exc

        if response.status_code >= 400:
            raise ShopifyApiError(
                f"Shopify API call failed ({response.status_code}): {response.text}",
                status_code=502,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyApiError("Shopify API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ShopifyApiError("Shopify API response must be a JSON object")
        return body
