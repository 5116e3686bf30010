"""
Section Catalog - Sections, their Liquid content and storefront listing.

The reconciliation core only reads the catalog (by id or by display name);
the admin routes own the write side.
"""

import re
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.db.models import Entitlement, Section, SectionContent
from sections_stack.db.session import store_guard
from sections_stack.exceptions import (
    AmbiguousSectionNameError,
    SectionContentNotFoundError,
    SectionIdentifierConflictError,
    SectionInUseError,
    SectionNotFoundError,
    WriteVerificationError,
)
from sections_stack.models.api import CatalogFilter, SectionCategory, SectionDraft
from sections_stack.models.domain import SectionData, is_section_id
from sections_stack.observability.logging import get_logger

logger = get_logger(__name__)


def slugify(name: str) -> str:
    """Lowercase, hyphen-separated identifier derived from a display name."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "section"


def default_liquid_template(name: str, category: str, description: str, created_at: datetime) -> str:
    """Starter Liquid source for sections created without custom code."""
    css_class = re.sub(r"\s+", "-", name.lower()) + "-section"
    description_line = f"Description: {description}" if description else ""
    return f"""{{% comment %}}
  {name}
  Category: {category}
  {description_line}
  Created: {created_at.isoformat()}
{{% endcomment %}}

<div class="{css_class}">
  <div class="container">
    <h2>{{{{ section.settings.heading | default: '{name}' }}}}</h2>
    {{% if section.settings.description != blank %}}
      <p>{{{{ section.settings.description }}}}</p>
    {{% endif %}}
  </div>
</div>

<style>
  .{css_class} {{
    padding: 60px 0;
  }}
  .{css_class} .container {{
    max-width: 1200px;
    margin: 0 auto;
    padding: 0 20px;
  }}
</style>

{{% schema %}}
{{
  "name": "{name}",
  "settings": [
    {{
      "type": "text",
      "id": "heading",
      "label": "Heading",
      "default": "{name}"
    }},
    {{
      "type": "textarea",
      "id": "description",
      "label": "Description"
    }}
  ],
  "presets": [
    {{
      "name": "{name}"
    }}
  ]
}}
{{% endschema %}}
"""


def section_to_domain(section: Section) -> SectionData:
    """Convert ORM section to domain model."""
    return SectionData(
        section_id=section.id,
        name=section.name,
        identifier=section.identifier,
        description=section.description,
        detailed_features=tuple(section.detailed_features or ()),
        category=SectionCategory(section.category),
        tags=tuple(section.tags or ()),
        thumbnail_url=section.thumbnail_url,
        image_gallery=tuple(section.image_gallery or ()),
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


class SectionCatalog(Protocol):
    """Read-only catalog lookups used by the billing event normalizer."""

    async def find_section_by_id(self, section_id: str) -> SectionData | None:
        """Section with this id, or None."""
        ...

    async def find_section_by_display_name(self, name: str) -> SectionData | None:
        """
        Section whose display name equals name exactly, or None.

        Raises:
            AmbiguousSectionNameError: more than one section has this name
        """
        ...


class CatalogService:
    """Section catalog backed by PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Lookups
    # ========================================================================

    async def find_section_by_id(self, section_id: str) -> SectionData | None:
        section = await self._get_section(section_id)
        return section_to_domain(section) if section else None

    async def find_section_by_display_name(self, name: str) -> SectionData | None:
        display_name = name.strip()
        if not display_name:
            return None

        stmt = select(Section).where(Section.name == display_name).limit(2)
        async with store_guard(self.session, "find_section_by_display_name"):
            result = await self.session.execute(stmt)
        matches = list(result.scalars().all())

        if len(matches) > 1:
            count_stmt = select(func.count()).select_from(Section).where(
                Section.name == display_name
            )
            async with store_guard(self.session, "count_sections_by_display_name"):
                total = (await self.session.execute(count_stmt)).scalar_one()
            raise AmbiguousSectionNameError(display_name, total)

        return section_to_domain(matches[0]) if matches else None

    async def get_section(self, section_id: str) -> SectionData:
        """Section by id, or SectionNotFoundError."""
        section = await self.find_section_by_id(section_id)
        if section is None:
            raise SectionNotFoundError(section_id)
        return section

    async def list_sections(self, filter_value: str = "all", search: str = "") -> list[SectionData]:
        """
        Storefront listing, newest first.

        filter_value is one of the CatalogFilter values or a SectionCategory
        value; anything else raises ValueError.
        """
        stmt = select(Section)

        if filter_value == CatalogFilter.FREE:
            stmt = stmt.where(Section.is_free.is_(True))
        elif filter_value == CatalogFilter.PAID:
            stmt = stmt.where(Section.is_free.is_(False))
        elif filter_value == CatalogFilter.POPULAR:
            stmt = stmt.where(Section.is_popular.is_(True))
        elif filter_value == CatalogFilter.TRENDING:
            stmt = stmt.where(Section.is_trending.is_(True))
        elif filter_value == CatalogFilter.FEATURED:
            stmt = stmt.where(Section.is_featured.is_(True))
        elif filter_value not in (CatalogFilter.ALL, CatalogFilter.NEWEST):
            stmt = stmt.where(Section.category == SectionCategory(filter_value).value)

        term = search.strip()
        if term:
            stmt = stmt.where(
                or_(
                    Section.name.icontains(term, autoescape=True),
                    Section.description.icontains(term, autoescape=True),
                    Section.identifier.icontains(term, autoescape=True),
                    Section.category.icontains(term, autoescape=True),
                    func.array_to_string(Section.tags, " ").icontains(term, autoescape=True),
                )
            )

        stmt = stmt.order_by(Section.created_at.desc())

        async with store_guard(self.session, "list_sections"):
            result = await self.session.execute(stmt)
        return [section_to_domain(section) for section in result.scalars().all()]

    async def get_section_content(self, section_id: str) -> str:
        """Liquid source of a section."""
        stmt = select(SectionContent.content).where(SectionContent.section_id == section_id)
        async with store_guard(self.session, "get_section_content"):
            result = await self.session.execute(stmt)
        content = result.scalar_one_or_none()
        if content is None:
            raise SectionContentNotFoundError(section_id)
        return content

    # ========================================================================
    # Admin writes
    # ========================================================================

    async def create_section(self, draft: SectionDraft) -> SectionData:
        """Create a section and its Liquid content in one transaction."""
        identifier = draft.identifier or slugify(draft.name)
        section = Section(identifier=identifier)
        self._apply_draft(section, draft)

        now = datetime.now(UTC)
        content = draft.custom_code.strip() or default_liquid_template(
            draft.name, draft.category.value, draft.description, now
        )

        async with store_guard(self.session, "create_section"):
            self.session.add(section)
            try:
                await self.session.flush()
            except IntegrityError as e:
                await self.session.rollback()
                raise SectionIdentifierConflictError(identifier) from e

            self.session.add(SectionContent(section_id=section.id, content=content))
            await self.session.flush()

            verified = await self.session.get(Section, section.id)
            if verified is None:
                raise WriteVerificationError(f"Section {section.id} not found after insert")

            await self.session.commit()

        logger.info(
            "section_created",
            section_id=section.id,
            identifier=identifier,
            is_free=section.is_free,
            custom_code=bool(draft.custom_code.strip()),
        )
        return section_to_domain(verified)

    async def update_section(self, section_id: str, draft: SectionDraft) -> SectionData:
        """
        Replace a section's attributes.

        The identifier only changes when the draft names one explicitly, and
        the Liquid content only when custom code is supplied.
        """
        section = await self._get_section(section_id)
        if section is None:
            raise SectionNotFoundError(section_id)

        if draft.identifier:
            section.identifier = draft.identifier
        self._apply_draft(section, draft)

        async with store_guard(self.session, "update_section"):
            try:
                await self.session.flush()
            except IntegrityError as e:
                await self.session.rollback()
                raise SectionIdentifierConflictError(draft.identifier or section_id) from e

            if draft.custom_code.strip():
                await self._replace_content(section_id, draft.custom_code.strip())

            await self.session.commit()

        logger.info("section_updated", section_id=section_id)
        return section_to_domain(section)

    async def delete_section(self, section_id: str) -> None:
        """Delete a section and its content; owned sections cannot be deleted."""
        section = await self._get_section(section_id)
        if section is None:
            raise SectionNotFoundError(section_id)

        owned_stmt = select(func.count()).select_from(Entitlement).where(
            Entitlement.section_id == section_id
        )
        async with store_guard(self.session, "delete_section"):
            owners = (await self.session.execute(owned_stmt)).scalar_one()
            if owners:
                raise SectionInUseError(section_id)

            await self.session.execute(
                delete(SectionContent).where(SectionContent.section_id == section_id)
            )
            await self.session.delete(section)
            try:
                await self.session.commit()
            except IntegrityError as e:
                # An entitlement landed between the check and the delete
                await self.session.rollback()
                raise SectionInUseError(section_id) from e

        logger.info("section_deleted", section_id=section_id)

    async def record_download(self, section_id: str) -> None:
        """Bump the download counter after a successful theme publish."""
        stmt = (
            update(Section)
            .where(Section.id == section_id)
            .values(download_count=Section.download_count + 1)
        )
        async with store_guard(self.session, "record_download"):
            await self.session.execute(stmt)
            await self.session.commit()

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _get_section(self, section_id: str) -> Section | None:
        if not is_section_id(section_id):
            return None
        async with store_guard(self.session, "get_section"):
            return await self.session.get(Section, section_id)

    async def _replace_content(self, section_id: str, content: str) -> None:
        stmt = select(SectionContent).where(SectionContent.section_id == section_id)
        existing = (await self.session.execute(stmt)).scalar_one_or_none()
        if existing is None:
            self.session.add(SectionContent(section_id=section_id, content=content))
        else:
            existing.content = content
        await self.session.flush()

    @staticmethod
    def _apply_draft(section: Section, draft: SectionDraft) -> None:
        is_free = draft.type == "free"
        section.name = draft.name
        section.description = draft.description
        section.detailed_features = list(draft.detailed_features)
        section.category = draft.category.value
        section.tags = list(draft.tags)
        section.thumbnail_url = draft.thumbnail_url
        section.image_gallery = list(draft.image_gallery)
        section.demo_url = draft.demo_url
        section.is_free = is_free
        section.price = Decimal("0") if is_free else draft.price
        section.is_popular = draft.is_popular
        section.is_trending = draft.is_trending
        section.is_featured = draft.is_featured
