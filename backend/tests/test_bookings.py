"""
Tests for the booking ledger endpoints.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Booking, BookingPayment, Content
from tests.conftest import BUYER_ID


@pytest.mark.asyncio
async def test_seed_booking(client: AsyncClient, buyer_headers, content: Content):
    response = await client.post("/api/bookings/seed", json={"content_id": content.id}, headers=buyer_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["created"] is True


@pytest.mark.asyncio
async def test_seed_booking_is_idempotent(
    client: AsyncClient, buyer_headers, content: Content, db_session: AsyncSession
):
    first = await client.post("/api/bookings/seed", json={"content_id": content.id}, headers=buyer_headers)
    second = await client.post("/api/bookings/seed", json={"content_id": content.id}, headers=buyer_headers)

    assert second.json()["created"] is False
    assert second.json()["booking_id"] == first.json()["booking_id"]
    count = (await db_session.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_seed_booking_unknown_content(client: AsyncClient, buyer_headers):
    response = await client.post("/api/bookings/seed", json={"content_id": "nope"}, headers=buyer_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_seed_booking_unauthenticated(client: AsyncClient, content: Content):
    response = await client.post("/api/bookings/seed", json={"content_id": content.id})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_seed_booking_missing_body_field(client: AsyncClient, buyer_headers):
    response = await client.post("/api/bookings/seed", json={}, headers=buyer_headers)
    assert response.status_code == 400
    assert "content_id" in response.json()["error"]


@pytest.mark.asyncio
async def test_list_creator_bookings_with_payments(
    client: AsyncClient, creator_headers, booking: Booking, db_session: AsyncSession
):
    db_session.add(BookingPayment(booking_id=booking.id, plan_type="full", amount_total_cents=120000))
    await db_session.commit()

    response = await client.get("/api/bookings", headers=creator_headers)

    assert response.status_code == 200
    rows = response.json()["bookings"]
    assert len(rows) == 1
    assert rows[0]["booking"]["id"] == booking.id
    assert rows[0]["booking"]["buyer_id"] == BUYER_ID
    assert [p["plan_type"] for p in rows[0]["payments"]] == ["full"]


@pytest.mark.asyncio
async def test_list_only_shows_own_bookings(client: AsyncClient, buyer_headers, booking: Booking):
    response = await client.get("/api/bookings", headers=buyer_headers)
    assert response.json()["bookings"] == []


@pytest.mark.asyncio
async def test_delete_booking_removes_payments(
    client: AsyncClient, creator_headers, booking: Booking, db_session: AsyncSession
):
    db_session.add(BookingPayment(booking_id=booking.id, plan_type="full", amount_total_cents=120000))
    await db_session.commit()

    response = await client.delete(f"/api/bookings/{booking.id}", headers=creator_headers)

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert (await db_session.execute(select(func.count()).select_from(Booking))).scalar_one() == 0
    assert (await db_session.execute(select(func.count()).select_from(BookingPayment))).scalar_one() == 0


@pytest.mark.asyncio
async def test_delete_booking_requires_creator(client: AsyncClient, buyer_headers, booking: Booking):
    response = await client.delete(f"/api/bookings/{booking.id}", headers=buyer_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_delete_unknown_booking(client: AsyncClient, creator_headers):
    response = await client.delete("/api/bookings/missing", headers=creator_headers)
    assert response.status_code == 404
