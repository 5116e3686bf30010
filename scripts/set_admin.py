#!/usr/bin/env python3
"""
Set Admin Script

Grants (or revokes) catalog admin rights for an installed shop.

Usage:
    python3 scripts/set_admin.py my-store.myshopify.com
    python3 scripts/set_admin.py my-store.myshopify.com --revoke
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sections_stack.db.session import close_engines, get_write_session, open_engines
from sections_stack.exceptions import StoreUnavailableError, UnknownShopError
from sections_stack.observability.logging import get_logger, setup_logging
from sections_stack.services.shops import ShopService

logger = get_logger(__name__)


async def set_admin(shop_domain: str, is_admin: bool) -> int:
    """Apply the flag; returns the process exit code."""
    open_engines()
    try:
        async with get_write_session() as session:
            service = ShopService(session)
            try:
                shop = await service.set_admin(shop_domain, is_admin)
            except UnknownShopError:
                known = await service.list_shop_domains()
                print(f"Shop not found: {shop_domain}")
                if known:
                    print("Installed shops:")
                    for domain in known:
                        print(f"  {domain}")
                else:
                    print("No shops are installed.")
                return 1
    except StoreUnavailableError as e:
        logger.error("set_admin_store_unavailable", error=e.message)
        return 2
    finally:
        await close_engines()

    action = "granted" if shop.is_admin else "revoked"
    print(f"Admin rights {action} for {shop.shop_domain}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Grant or revoke catalog admin rights")
    parser.add_argument("shop_domain", help="Shop domain, e.g. my-store.myshopify.com")
    parser.add_argument("--revoke", action="store_true", help="Revoke instead of grant")
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(set_admin(args.shop_domain, not args.revoke)))


if __name__ == "__main__":
    main()
