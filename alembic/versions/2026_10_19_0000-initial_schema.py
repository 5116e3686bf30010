"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create shops, sections, section_contents and entitlements."""

    # ========================================================================
    # Create shops table
    # ========================================================================
    op.create_table(
        'shops',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False, server_default=''),
        sa.Column('scope', sa.Text(), nullable=False, server_default=''),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('installed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('uninstalled_at', sa.DateTime(timezone=True), nullable=True),

        sa.UniqueConstraint('shop_domain', name='uq_shops_shop_domain'),
    )

    op.create_index('idx_shops_installed', 'shops', ['shop_domain'], postgresql_where=sa.text('uninstalled_at IS NULL'))

    # ========================================================================
    # Create sections table
    # ========================================================================
    op.create_table(
        'sections',
        sa.Column('id', sa.String(24), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('identifier', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('detailed_features', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('category', sa.String(20), nullable=False, server_default='other'),
        sa.Column('tags', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('thumbnail_url', sa.Text(), nullable=False, server_default=''),
        sa.Column('image_gallery', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('demo_url', sa.Text(), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_free', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_popular', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_trending', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_featured', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rating', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("id ~ '^[0-9a-f]{24}$'", name='ck_sections_id_hex'),
        sa.CheckConstraint('price >= 0', name='ck_sections_price_non_negative'),
        sa.CheckConstraint('rating >= 0 AND rating <= 5', name='ck_sections_rating_range'),
        sa.CheckConstraint('download_count >= 0', name='ck_sections_download_count_non_negative'),
        sa.CheckConstraint(
            "category IN ('hero', 'testimonial', 'video', 'text', 'images', 'snippet', "
            "'countdown', 'scrolling', 'featured', 'other')",
            name='ck_sections_category',
        ),
        sa.UniqueConstraint('identifier', name='uq_sections_identifier'),
    )

    op.create_index('ix_sections_name', 'sections', ['name'])
    op.create_index('idx_sections_created_at', 'sections', ['created_at'])
    op.create_index('idx_sections_category', 'sections', ['category'])

    # ========================================================================
    # Create section_contents table
    # ========================================================================
    op.create_table(
        'section_contents',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('section_id', sa.String(24), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['section_id'], ['sections.id'], name='fk_section_contents_section', ondelete='CASCADE'),
        sa.UniqueConstraint('section_id', name='uq_section_contents_section'),
    )

    # ========================================================================
    # Create entitlements table
    # ========================================================================
    op.create_table(
        'entitlements',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('shop_id', UUID(as_uuid=True), nullable=False),
        sa.Column('section_id', sa.String(24), nullable=False),
        sa.Column('charge_id', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("status IN ('pending', 'active')", name='ck_entitlements_status'),
        sa.UniqueConstraint('shop_id', 'section_id', name='uq_entitlements_shop_section'),

        # Foreign keys (purchased sections cannot be deleted)
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], name='fk_entitlements_shop', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['section_id'], ['sections.id'], name='fk_entitlements_section', ondelete='RESTRICT'),
    )

    op.create_index('ix_entitlements_section_id', 'entitlements', ['section_id'])
    op.create_index('idx_entitlements_shop_granted', 'entitlements', ['shop_id', 'granted_at'])
    op.create_index('idx_entitlements_charge_id', 'entitlements', ['charge_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('entitlements')
    op.drop_table('section_contents')
    op.drop_table('sections')
    op.drop_table('shops')
