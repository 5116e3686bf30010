"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

import secrets
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def new_section_id() -> str:
    """24 lowercase hex characters, embeddable as sectionId=<id> in charge names."""
    return secrets.token_hex(12)


class Shop(Base):
    """
    ORM model for shops table.

    One row per merchant store that installed the app. Uninstalled shops are
    kept as tombstones (uninstalled_at set, access token cleared) so their
    entitlements survive a re-install.
    """

    __tablename__ = "shops"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity
    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Offline access credential
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    scope: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Catalog admin flag
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Lifecycle timestamps
    installed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    uninstalled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    entitlements: Mapped[list["Entitlement"]] = relationship(back_populates="shop")

    __table_args__ = (
        Index(
            "idx_shops_installed",
            "shop_domain",
            postgresql_where=(uninstalled_at.is_(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Shop(id={self.id}, shop_domain={self.shop_domain}, is_admin={self.is_admin})>"


class Section(Base):
    """
    ORM model for sections table.

    Catalog of purchasable theme sections.
    """

    __tablename__ = "sections"

    # Primary Key (hex, not UUID, so it fits the charge name pattern)
    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_section_id)

    # Naming
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    identifier: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Storefront content
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    detailed_features: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )
    category: Mapped[str] = mapped_column(String(20), nullable=False, default="other")
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    thumbnail_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_gallery: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    demo_url: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Merchandising flags
    is_popular: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_trending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    content: Mapped["SectionContent | None"] = relationship(back_populates="section")

    __table_args__ = (
        CheckConstraint("id ~ '^[0-9a-f]{24}$'", name="ck_sections_id_hex"),
        CheckConstraint("price >= 0", name="ck_sections_price_non_negative"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_sections_rating_range"),
        CheckConstraint("download_count >= 0", name="ck_sections_download_count_non_negative"),
        CheckConstraint(
            "category IN ('hero', 'testimonial', 'video', 'text', 'images', 'snippet', "
            "'countdown', 'scrolling', 'featured', 'other')",
            name="ck_sections_category",
        ),
        Index("idx_sections_created_at", "created_at"),
        Index("idx_sections_category", "category"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Section(id={self.id}, name={self.name}, price={self.price})>"


class SectionContent(Base):
    """ORM model for section_contents table (Liquid source per section)."""

    __tablename__ = "section_contents"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    section_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("sections.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    section: Mapped[Section] = relationship(back_populates="content")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<SectionContent(section_id={self.section_id}, length={len(self.content)})>"


class Entitlement(Base):
    """
    ORM model for entitlements table.

    At most one row per (shop, section); later billing events for the same
    pair update the row in place.
    """

    __tablename__ = "entitlements"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Ownership
    shop_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="RESTRICT"),
        nullable=False,
    )
    section_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("sections.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Shopify charge GID, or FREE for free grants
    charge_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Audit timestamps
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    shop: Mapped[Shop] = relationship(back_populates="entitlements")
    section: Mapped[Section] = relationship()

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'active')", name="ck_entitlements_status"),
        UniqueConstraint("shop_id", "section_id", name="uq_entitlements_shop_section"),
        Index("idx_entitlements_shop_granted", "shop_id", "granted_at"),
        Index("idx_entitlements_charge_id", "charge_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Entitlement(id={self.id}, shop_id={self.shop_id}, "
            f"section_id={self.section_id}, status={self.status})>"
        )
