"""
Entitlement Store - Persistent record of which shop owns which section.

NO DICTIONARIES - All operations use strongly typed domain models.

The unique constraint uq_entitlements_shop_section guarantees at most one row
per (shop, section). create_entitlement is an upsert on that constraint so a
concurrent duplicate delivery updates the winner's row instead of failing.
Writes that would not change charge_id or status leave the row untouched.
"""

from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.db.models import Entitlement, Section
from sections_stack.db.session import store_guard
from sections_stack.exceptions import WriteVerificationError
from sections_stack.models.api import EntitlementStatus
from sections_stack.models.domain import EntitlementData, OwnedSection
from sections_stack.observability.logging import get_logger
from sections_stack.services.catalog import section_to_domain

logger = get_logger(__name__)


def entitlement_to_domain(entitlement: Entitlement) -> EntitlementData:
    """Convert ORM entitlement to domain model."""
    return EntitlementData(
        entitlement_id=entitlement.id,
        shop_id=entitlement.shop_id,
        section_id=entitlement.section_id,
        charge_id=entitlement.charge_id,
        status=EntitlementStatus(entitlement.status),
        granted_at=entitlement.granted_at,
        updated_at=entitlement.updated_at,
    )


class EntitlementStore(Protocol):
    """
    Entitlement persistence protocol.

    All methods raise StoreUnavailableError on transient persistence failures.
    """

    async def find_entitlement(self, shop_id: UUID, section_id: str) -> EntitlementData | None:
        """Entitlement for the (shop, section) pair, or None."""
        ...

    async def create_entitlement(
        self, shop_id: UUID, section_id: str, charge_id: str, status: EntitlementStatus
    ) -> EntitlementData:
        """Insert an entitlement (upsert on the shop/section constraint)."""
        ...

    async def update_entitlement_charge(
        self, entitlement_id: UUID, charge_id: str, status: EntitlementStatus
    ) -> EntitlementData:
        """Overwrite charge id and status of an existing entitlement."""
        ...

    async def list_entitlements_for_shop(self, shop_id: UUID) -> list[OwnedSection]:
        """Entitlements joined with their sections, newest grant first."""
        ...


class SqlEntitlementStore:
    """Entitlement Store backed by PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_entitlement(self, shop_id: UUID, section_id: str) -> EntitlementData | None:
        stmt = select(Entitlement).where(
            Entitlement.shop_id == shop_id,
            Entitlement.section_id == section_id,
        )
        async with store_guard(self.session, "find_entitlement"):
            result = await self.session.execute(stmt)
        entitlement = result.scalar_one_or_none()
        return entitlement_to_domain(entitlement) if entitlement else None

    async def create_entitlement(
        self, shop_id: UUID, section_id: str, charge_id: str, status: EntitlementStatus
    ) -> EntitlementData:
        now = datetime.now(UTC)
        insert_stmt = pg_insert(Entitlement).values(
            shop_id=shop_id,
            section_id=section_id,
            charge_id=charge_id,
            status=status.value,
            granted_at=now,
            updated_at=now,
        )
        stmt = (
            insert_stmt.on_conflict_do_update(
                constraint="uq_entitlements_shop_section",
                set_={
                    "charge_id": insert_stmt.excluded.charge_id,
                    "status": insert_stmt.excluded.status,
                    "updated_at": now,
                },
                where=or_(
                    Entitlement.charge_id != insert_stmt.excluded.charge_id,
                    Entitlement.status != insert_stmt.excluded.status,
                ),
            )
            .returning(Entitlement)
            .execution_options(populate_existing=True)
        )

        async with store_guard(self.session, "create_entitlement"):
            result = await self.session.execute(stmt)
            entitlement = result.scalar_one_or_none()
            await self.session.commit()

        if entitlement is None:
            # Conflict with an identical row: nothing was written
            existing = await self.find_entitlement(shop_id, section_id)
            if existing is None:
                raise WriteVerificationError(
                    f"Entitlement for shop {shop_id} / section {section_id} missing after upsert"
                )
            return existing

        return entitlement_to_domain(entitlement)

    async def update_entitlement_charge(
        self, entitlement_id: UUID, charge_id: str, status: EntitlementStatus
    ) -> EntitlementData:
        async with store_guard(self.session, "update_entitlement_charge"):
            entitlement = await self.session.get(Entitlement, entitlement_id)
            if entitlement is None:
                raise WriteVerificationError(f"Entitlement {entitlement_id} disappeared before update")

            if entitlement.charge_id == charge_id and entitlement.status == status.value:
                return entitlement_to_domain(entitlement)

            entitlement.charge_id = charge_id
            entitlement.status = status.value
            await self.session.flush()
            await self.session.commit()

        return entitlement_to_domain(entitlement)

    async def list_entitlements_for_shop(self, shop_id: UUID) -> list[OwnedSection]:
        stmt = (
            select(Entitlement, Section)
            .join(Section, Entitlement.section_id == Section.id)
            .where(Entitlement.shop_id == shop_id)
            .order_by(Entitlement.granted_at.desc())
        )
        async with store_guard(self.session, "list_entitlements_for_shop"):
            result = await self.session.execute(stmt)
        return [
            OwnedSection(
                entitlement=entitlement_to_domain(entitlement),
                section=section_to_domain(section),
            )
            for entitlement, section in result.all()
        ]
