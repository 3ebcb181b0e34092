"""
"Book a call" redirect endpoint.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BookingEngineError
from app.core.logging import get_logger
from app.core.security import get_optional_user_id
from app.db.session import get_db
from app.services.fallback_resolver import BookingRequest, resolve_booking_destination

logger = get_logger(__name__)
router = APIRouter(tags=["Booking Router"])


@router.get("/book", status_code=status.HTTP_302_FOUND)
async def book(
    creator_id: Optional[str] = Query(None),
    content_id: Optional[str] = Query(None),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Redirect a viewer to the creator's booking destination.

    Resolution order: the content item's own link, the creator's booking
    targets (one click = one allocation), the legacy closer table, and the
    creator's profile link.
    """
    if not creator_id:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "creator_id is required"},
        )

    req = BookingRequest(creator_id=creator_id, content_id=content_id or None, viewer_id=viewer_id)
    try:
        resolution = await resolve_booking_destination(db, req)
    except BookingEngineError:
        raise
    except Exception as e:
        logger.exception("booking_router_failed", creator_id=creator_id, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Booking router failed"},
        )

    return RedirectResponse(url=resolution.url, status_code=status.HTTP_302_FOUND)
