"""
Shop Directory - Shop Account lookup and install/uninstall lifecycle.

Uninstalled shops are tombstoned rather than deleted: the access token is
cleared and uninstalled_at is set, and lookups treat them as absent until the
merchant installs again.
"""

import re
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.db.models import Shop
from sections_stack.db.session import store_guard
from sections_stack.exceptions import UnknownShopError, WriteVerificationError
from sections_stack.models.domain import ShopAccount
from sections_stack.observability.logging import get_logger

logger = get_logger(__name__)

_SHOP_DOMAIN_RE = re.compile(r"[a-z0-9][a-z0-9-]*\.myshopify\.com")


def canonical_shop_domain(shop: str) -> str:
    """Lowercase, trimmed, without scheme or trailing slash."""
    normalized = shop.strip().lower()
    for prefix in ("https://", "http://"):
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix) :]
    return normalized.rstrip("/")


def normalize_shop_domain(shop: str) -> str:
    """Canonical *.myshopify.com domain, or ValueError."""
    normalized = canonical_shop_domain(shop)
    if not _SHOP_DOMAIN_RE.fullmatch(normalized):
        raise ValueError(f"shop must be a valid *.myshopify.com domain, got {shop!r}")
    return normalized


def shop_to_domain(shop: Shop) -> ShopAccount:
    """Convert ORM shop to domain model."""
    return ShopAccount(
        shop_id=shop.id,
        shop_domain=shop.shop_domain,
        access_token=shop.access_token,
        scope=shop.scope,
        is_admin=shop.is_admin,
        installed_at=shop.installed_at,
        updated_at=shop.updated_at,
    )


class ShopDirectory(Protocol):
    """Read access to installed shops, as needed by reconciliation."""

    async def find_shop_by_domain(self, shop_domain: str) -> ShopAccount | None:
        """Installed shop for the domain, or None (unknown or uninstalled)."""
        ...


class ShopService:
    """Shop Account persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_shop_by_domain(self, shop_domain: str) -> ShopAccount | None:
        shop = await self._find_installed(canonical_shop_domain(shop_domain))
        return shop_to_domain(shop) if shop else None

    async def record_installation(
        self, shop_domain: str, access_token: str, scope: str
    ) -> ShopAccount:
        """
        Create the account on first install, refresh it on re-auth.

        A re-install after uninstall clears the tombstone and keeps the
        original shop id, so earlier entitlements still apply.
        """
        domain = normalize_shop_domain(shop_domain)
        now = datetime.now(UTC)

        stmt = (
            pg_insert(Shop)
            .values(
                shop_domain=domain,
                access_token=access_token,
                scope=scope,
                is_admin=False,
                installed_at=now,
                updated_at=now,
                uninstalled_at=None,
            )
            .on_conflict_do_update(
                index_elements=[Shop.shop_domain],
                set_={
                    "access_token": access_token,
                    "scope": scope,
                    "updated_at": now,
                    "uninstalled_at": None,
                },
            )
            .returning(Shop)
            .execution_options(populate_existing=True)
        )

        async with store_guard(self.session, "record_installation"):
            result = await self.session.execute(stmt)
            shop = result.scalar_one_or_none()
            if shop is None:
                raise WriteVerificationError(f"Shop {domain} not returned after upsert")
            await self.session.commit()

        logger.info("shop_installation_recorded", shop_domain=domain, scope=scope)
        return shop_to_domain(shop)

    async def mark_uninstalled(self, shop_domain: str) -> bool:
        """Tombstone the shop. Returns False when it was not installed."""
        domain = canonical_shop_domain(shop_domain)
        stmt = (
            update(Shop)
            .where(Shop.shop_domain == domain, Shop.uninstalled_at.is_(None))
            .values(access_token="", uninstalled_at=datetime.now(UTC))
        )

        async with store_guard(self.session, "mark_uninstalled"):
            result = await self.session.execute(stmt)
            await self.session.commit()

        uninstalled = bool(result.rowcount)
        logger.info("shop_uninstalled", shop_domain=domain, was_installed=uninstalled)
        return uninstalled

    async def update_scope(self, shop_domain: str, scope: str) -> bool:
        """Store the granted scopes. Returns False when the shop is not installed."""
        domain = canonical_shop_domain(shop_domain)
        stmt = (
            update(Shop)
            .where(Shop.shop_domain == domain, Shop.uninstalled_at.is_(None))
            .values(scope=scope, updated_at=datetime.now(UTC))
        )

        async with store_guard(self.session, "update_scope"):
            result = await self.session.execute(stmt)
            await self.session.commit()

        updated = bool(result.rowcount)
        logger.info("shop_scope_updated", shop_domain=domain, scope=scope, was_installed=updated)
        return updated

    async def set_admin(self, shop_domain: str, is_admin: bool) -> ShopAccount:
        """Grant or revoke catalog admin rights."""
        domain = canonical_shop_domain(shop_domain)
        shop = await self._find_installed(domain)
        if shop is None:
            raise UnknownShopError(domain)

        async with store_guard(self.session, "set_admin"):
            shop.is_admin = is_admin
            await self.session.flush()
            await self.session.commit()

        logger.info("shop_admin_flag_set", shop_domain=domain, is_admin=is_admin)
        return shop_to_domain(shop)

    async def list_shop_domains(self) -> list[str]:
        """Domains of all installed shops, alphabetically."""
        stmt = (
            select(Shop.shop_domain)
            .where(Shop.uninstalled_at.is_(None))
            .order_by(Shop.shop_domain)
        )
        async with store_guard(self.session, "list_shop_domains"):
            result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _find_installed(self, domain: str) -> Shop | None:
        stmt = select(Shop).where(Shop.shop_domain == domain, Shop.uninstalled_at.is_(None))
        async with store_guard(self.session, "find_shop"):
            result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
