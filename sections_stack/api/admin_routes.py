"""
Admin API routes for managing the section catalog.

Protected by the session token of a shop flagged as admin
(see scripts/set_admin.py).
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.api.dependencies import require_admin_shop
from sections_stack.api.routes import section_response, store_unavailable
from sections_stack.db.session import get_write_db
from sections_stack.exceptions import (
    SectionContentNotFoundError,
    SectionIdentifierConflictError,
    SectionInUseError,
    SectionNotFoundError,
    StoreUnavailableError,
    WriteVerificationError,
)
from sections_stack.models.api import SectionDraft, SectionListResponse, SectionResponse
from sections_stack.models.domain import ShopAccount
from sections_stack.observability.logging import get_logger
from sections_stack.services.catalog import CatalogService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


class SectionContentResponse(BaseModel):
    """Liquid source of a section."""

    section_id: str
    content: str


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")


@router.get("/sections", response_model=SectionListResponse)
async def list_all_sections(
    db: AsyncSession = Depends(get_write_db),
    admin: ShopAccount = Depends(require_admin_shop),
) -> SectionListResponse:
    """All sections, newest first."""
    try:
        sections = await CatalogService(db).list_sections()
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    return SectionListResponse(
        sections=[section_response(s) for s in sections],
        category="all",
        search="",
    )


@router.post("/sections", response_model=SectionResponse, status_code=status.HTTP_201_CREATED)
async def create_section(
    draft: SectionDraft,
    db: AsyncSession = Depends(get_write_db),
    admin: ShopAccount = Depends(require_admin_shop),
) -> SectionResponse:
    """Create a section; a starter Liquid template is used when no code is given."""
    try:
        section = await CatalogService(db).create_section(draft)
    except SectionIdentifierConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Identifier already in use: {exc.identifier}",
        ) from exc
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    logger.info("admin_section_created", admin_shop=admin.shop_domain, section_id=section.section_id)
    return section_response(section)


@router.put("/sections/{section_id}", response_model=SectionResponse)
async def update_section(
    section_id: str,
    draft: SectionDraft,
    db: AsyncSession = Depends(get_write_db),
    admin: ShopAccount = Depends(require_admin_shop),
) -> SectionResponse:
    """Replace a section's attributes (and its code when custom_code is given)."""
    try:
        section = await CatalogService(db).update_section(section_id, draft)
    except SectionNotFoundError as exc:
        raise _not_found() from exc
    except SectionIdentifierConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Identifier already in use: {exc.identifier}",
        ) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    logger.info("admin_section_updated", admin_shop=admin.shop_domain, section_id=section_id)
    return section_response(section)


@router.get("/sections/{section_id}/content", response_model=SectionContentResponse)
async def get_section_content(
    section_id: str,
    db: AsyncSession = Depends(get_write_db),
    admin: ShopAccount = Depends(require_admin_shop),
) -> SectionContentResponse:
    """Liquid source of a section."""
    try:
        content = await CatalogService(db).get_section_content(section_id)
    except SectionContentNotFoundError as exc:
        raise _not_found() from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    return SectionContentResponse(section_id=section_id, content=content)


@router.delete("/sections/{section_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_section(
    section_id: str,
    db: AsyncSession = Depends(get_write_db),
    admin: ShopAccount = Depends(require_admin_shop),
) -> Response:
    """Delete a section and its content. Purchased sections cannot be deleted."""
    try:
        await CatalogService(db).delete_section(section_id)
    except SectionNotFoundError as exc:
        raise _not_found() from exc
    except SectionInUseError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Section has been purchased and cannot be deleted",
        ) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    logger.info("admin_section_deleted", admin_shop=admin.shop_domain, section_id=section_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
