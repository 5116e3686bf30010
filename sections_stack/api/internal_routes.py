"""
Internal API routes - called by the platform integration layer.

The OAuth code exchange happens outside this service; once a merchant has
installed (or re-authorized) the app, the resulting offline token is reported
here.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.api.dependencies import require_internal_api_token
from sections_stack.api.routes import store_unavailable
from sections_stack.db.session import get_write_db
from sections_stack.exceptions import StoreUnavailableError, WriteVerificationError
from sections_stack.models.api import RecordInstallationRequest, ShopResponse
from sections_stack.services.shops import ShopService

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_api_token)],
)


@router.post("/shops", response_model=ShopResponse)
async def record_installation(
    request: RecordInstallationRequest,
    db: AsyncSession = Depends(get_write_db),
) -> ShopResponse:
    """Create or refresh a Shop Account after install / re-auth."""
    try:
        shop = await ShopService(db).record_installation(
            request.shop, request.access_token, request.scope
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc

    return ShopResponse(
        id=shop.shop_id,
        shop_domain=shop.shop_domain,
        scope=shop.scope,
        is_admin=shop.is_admin,
        installed_at=shop.installed_at,
    )
