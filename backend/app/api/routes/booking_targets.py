"""
Creator-side management of booking targets and routing.
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.core.security import get_current_user_id
from app.db.session import get_db
from app.schemas.booking_target import (
    BookingTargetCreate,
    BookingTargetResponse,
    BookingTargetUpdate,
    RoutingConfigResponse,
    RoutingConfigUpdate,
    TestPickResponse,
)
from app.services import routing_service

router = APIRouter(prefix="/booking-targets", tags=["Booking Targets"])


@router.get("", response_model=list[BookingTargetResponse])
async def list_targets(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await routing_service.list_targets(db, user_id)


@router.post("", response_model=BookingTargetResponse, status_code=status.HTTP_201_CREATED)
async def save_target(
    data: BookingTargetCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Add a destination. Posting an existing URL updates it in place."""
    return await routing_service.upsert_target(db, user_id, data)


@router.get("/routing", response_model=RoutingConfigResponse)
async def get_routing(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await routing_service.get_routing(db, user_id)


@router.put("/routing", response_model=RoutingConfigResponse)
async def set_routing(
    data: RoutingConfigUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await routing_service.set_routing(db, user_id, data)


@router.post("/test-pick", response_model=TestPickResponse)
async def test_pick(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Run one real allocation for the caller. Counts like a click."""
    picked = await routing_service.pick_and_bump(db, user_id, viewer_id=user_id)
    if picked is None:
        raise NotFound("No active booking targets")
    return TestPickResponse(target_id=picked.target_id, url=picked.destination_url, mode=picked.mode)


@router.patch("/{target_id}", response_model=BookingTargetResponse)
async def update_target(
    target_id: str,
    data: BookingTargetUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await routing_service.update_target(db, target_id, user_id, data)


@router.delete("/{target_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_target(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await routing_service.delete_target(db, target_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
