"""
Tests for the payment webhook: signature checks, idempotent purchase
upserts, setup-mode bookings, booking payments and refunds.
"""

import json

import pytest
from httpx import AsyncClient
from sqlalchemy import Insert, Update, func, insert, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Booking, BookingPayment, Content, Purchase
from app.services.reconciliation_service import UpsertOutcome, upsert_purchase_from_session
from tests.conftest import BUYER_ID, CREATOR_ID, make_event, post_event, sign_payload


def paid_session(session_id="cs_paid_1", payment_intent="pi_1", **metadata) -> dict:
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": "payment",
        "payment_status": "paid",
        "payment_intent": payment_intent,
        "amount_total": 5000,
        "currency": "usd",
        "metadata": {"buyer_id": BUYER_ID, "creator_id": CREATOR_ID, **metadata},
    }


async def purchases(db: AsyncSession) -> list[Purchase]:
    result = await db.execute(select(Purchase).execution_options(populate_existing=True))
    return list(result.scalars().all())


async def fetch(db: AsyncSession, model, row_id):
    return (
        await db.execute(
            select(model).where(model.id == row_id).execution_options(populate_existing=True)
        )
    ).scalar_one()


@pytest.mark.asyncio
async def test_invalid_signature_is_rejected(client: AsyncClient, db_session: AsyncSession):
    event = make_event("checkout.session.completed", paid_session())
    payload = json.dumps(event).encode()

    response = await post_event(client, event, signature=sign_payload(payload, secret="whsec_wrong"))

    assert response.status_code == 400
    assert await purchases(db_session) == []


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(client: AsyncClient):
    response = await client.post("/api/stripe/webhook", content=b"{}")
    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_paid_session_replay_is_idempotent(client: AsyncClient, db_session: AsyncSession):
    event = make_event("checkout.session.completed", paid_session())

    for _ in range(3):
        response = await post_event(client, event)
        assert response.status_code == 200
        assert response.json()["ok"] is True

    rows = await purchases(db_session)
    assert len(rows) == 1
    assert rows[0].status == "paid"
    assert rows[0].external_transaction_id == "pi_1"
    assert rows[0].amount_cents == 5000


@pytest.mark.asyncio
async def test_async_payment_succeeded_after_completed(client: AsyncClient, db_session: AsyncSession):
    session = paid_session()
    await post_event(client, make_event("checkout.session.completed", session))
    response = await post_event(client, make_event("checkout.session.async_payment_succeeded", session))

    assert response.status_code == 200
    assert len(await purchases(db_session)) == 1


@pytest.mark.asyncio
async def test_pending_purchase_is_promoted(client: AsyncClient, db_session: AsyncSession):
    db_session.add(Purchase(external_session_id="cs_paid_1", status="pending", amount_cents=0))
    await db_session.commit()

    await post_event(client, make_event("checkout.session.completed", paid_session()))

    rows = await purchases(db_session)
    assert len(rows) == 1
    assert rows[0].status == "paid"
    assert rows[0].external_transaction_id == "pi_1"


@pytest.mark.asyncio
async def test_purchase_found_by_transaction_is_updated(client: AsyncClient, db_session: AsyncSession):
    db_session.add(Purchase(external_session_id="cs_older", external_transaction_id="pi_1", status="paid"))
    await db_session.commit()

    await post_event(client, make_event("checkout.session.completed", paid_session(session_id="cs_newer")))

    rows = await purchases(db_session)
    assert len(rows) == 1
    assert rows[0].external_session_id == "cs_newer"
    assert rows[0].buyer_id == BUYER_ID


@pytest.mark.asyncio
async def test_unpaid_session_is_acknowledged_without_rows(client: AsyncClient, db_session: AsyncSession):
    session = {**paid_session(), "payment_status": "unpaid"}
    response = await post_event(client, make_event("checkout.session.completed", session))

    assert response.status_code == 200
    assert await purchases(db_session) == []


@pytest.mark.asyncio
async def test_refund_marks_purchase(client: AsyncClient, db_session: AsyncSession):
    await post_event(client, make_event("checkout.session.completed", paid_session()))

    charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_1"}
    response = await post_event(client, make_event("charge.refunded", charge))

    assert response.status_code == 200
    assert (await purchases(db_session))[0].status == "refunded"


@pytest.mark.asyncio
async def test_refund_for_unknown_transaction_is_noop(client: AsyncClient, db_session: AsyncSession):
    charge = {"id": "ch_2", "object": "charge", "payment_intent": "pi_unknown"}
    response = await post_event(client, make_event("charge.refunded", charge))

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert await purchases(db_session) == []


@pytest.mark.asyncio
async def test_unknown_event_type_is_acknowledged(client: AsyncClient):
    response = await post_event(client, make_event("customer.created", {"id": "cus_1"}))

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["event_type"] == "customer.created"


@pytest.mark.asyncio
async def test_setup_session_creates_booking_once(client: AsyncClient, db_session: AsyncSession):
    post = Content(creator_id=CREATOR_ID)
    db_session.add(post)
    await db_session.commit()

    session = {
        "id": "cs_setup_1",
        "object": "checkout.session",
        "mode": "setup",
        "metadata": {"buyer_id": BUYER_ID, "content_id": post.id},
    }
    event = make_event("checkout.session.completed", session)
    await post_event(client, event)
    await post_event(client, event)

    bookings = (await db_session.execute(select(Booking))).scalars().all()
    assert len(bookings) == 1
    assert bookings[0].creator_id == CREATOR_ID
    assert bookings[0].status == "booked"


@pytest.mark.asyncio
async def test_setup_session_reuses_seeded_booking(
    client: AsyncClient, db_session: AsyncSession, booking: Booking
):
    session = {
        "id": "cs_setup_2",
        "object": "checkout.session",
        "mode": "setup",
        "metadata": {"buyer_id": BUYER_ID, "content_id": booking.content_id},
    }
    await post_event(client, make_event("checkout.session.completed", session))

    count = (await db_session.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_setup_session_without_buyer_is_skipped(client: AsyncClient, db_session: AsyncSession):
    session = {"id": "cs_setup_3", "object": "checkout.session", "mode": "setup", "metadata": {}}
    response = await post_event(client, make_event("checkout.session.completed", session))

    assert response.status_code == 200
    count = (await db_session.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_paid_session_links_open_booking(
    client: AsyncClient, db_session: AsyncSession, booking: Booking
):
    await post_event(
        client,
        make_event("checkout.session.completed", paid_session(content_id=booking.content_id)),
    )

    purchase = (await purchases(db_session))[0]
    linked = await fetch(db_session, Booking, booking.id)
    assert linked.status == "completed"
    assert linked.linked_payment_id == purchase.id
    assert purchase.booking_id == booking.id


@pytest.mark.asyncio
async def test_booking_payment_session_paid(client: AsyncClient, db_session: AsyncSession, booking: Booking):
    payment = BookingPayment(
        booking_id=booking.id,
        plan_type="full",
        status="link_sent",
        amount_total_cents=120000,
        platform_fee_cents=14400,
    )
    db_session.add(payment)
    await db_session.commit()

    session = paid_session(
        session_id="cs_link_1",
        payment_intent="pi_link_1",
        booking_id=booking.id,
        booking_payment_id=payment.id,
        plan_type="full",
    )
    response = await post_event(client, make_event("checkout.session.completed", session))
    assert response.json()["ok"] is True

    paid = await fetch(db_session, BookingPayment, payment.id)
    assert paid.status == "paid"
    assert paid.external_session_id == "cs_link_1"
    assert paid.completed_at is not None

    completed = await fetch(db_session, Booking, booking.id)
    assert completed.status == "completed"
    assert completed.linked_payment_id == (await purchases(db_session))[0].id


@pytest.mark.asyncio
async def test_expired_session_fails_booking_payment(
    client: AsyncClient, db_session: AsyncSession, booking: Booking
):
    payment = BookingPayment(
        booking_id=booking.id,
        plan_type="full",
        status="link_sent",
        amount_total_cents=120000,
        external_session_id="cs_link_2",
    )
    db_session.add(payment)
    await db_session.commit()

    session = {"id": "cs_link_2", "object": "checkout.session", "metadata": {}}
    await post_event(client, make_event("checkout.session.expired", session))

    assert (await fetch(db_session, BookingPayment, payment.id)).status == "failed"


@pytest.mark.asyncio
async def test_invoice_paid_completes_installment_plan(
    client: AsyncClient, db_session: AsyncSession, booking: Booking
):
    payment = BookingPayment(
        booking_id=booking.id,
        plan_type="installment",
        installment_months=3,
        status="link_sent",
        amount_total_cents=120000,
        installment_amount_cents=40000,
    )
    db_session.add(payment)
    await db_session.commit()

    invoice = {
        "id": "in_1",
        "object": "invoice",
        "subscription": "sub_1",
        "amount_paid": 40000,
        "metadata": {},
        "lines": {"data": [{"metadata": {"booking_payment_id": payment.id, "booking_id": booking.id}}]},
    }
    await post_event(client, make_event("invoice.payment_succeeded", invoice))

    paid = await fetch(db_session, BookingPayment, payment.id)
    assert paid.status == "paid"
    assert paid.external_subscription_id == "sub_1"
    assert (await fetch(db_session, Booking, booking.id)).status == "completed"


@pytest.mark.asyncio
async def test_internal_error_acknowledged_with_ok_false(client: AsyncClient, monkeypatch):
    async def boom(db, event):
        raise RuntimeError("unexpected")

    monkeypatch.setattr("app.api.routes.webhooks.handle_event", boom)

    response = await post_event(client, make_event("checkout.session.completed", paid_session()))

    assert response.status_code == 200
    assert response.json()["ok"] is False


@pytest.mark.asyncio
async def test_store_unreachable_returns_503(client: AsyncClient, monkeypatch):
    async def down(db, event):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr("app.api.routes.webhooks.handle_event", down)

    response = await post_event(client, make_event("checkout.session.completed", paid_session()))

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_installment_session_paid_records_purchase_and_links_booking(
    client: AsyncClient, db_session: AsyncSession, booking: Booking
):
    payment = BookingPayment(
        booking_id=booking.id,
        plan_type="installment",
        installment_months=3,
        status="link_sent",
        amount_total_cents=120000,
        installment_amount_cents=40000,
    )
    db_session.add(payment)
    await db_session.commit()

    session = {
        **paid_session(
            session_id="cs_plan_1",
            payment_intent=None,
            booking_id=booking.id,
            booking_payment_id=payment.id,
            plan_type="installment",
        ),
        "mode": "subscription",
        "subscription": "sub_plan_1",
        "amount_total": 40000,
    }
    response = await post_event(client, make_event("checkout.session.completed", session))
    assert response.json()["ok"] is True

    rows = await purchases(db_session)
    assert len(rows) == 1
    assert rows[0].status == "paid"
    assert rows[0].external_session_id == "cs_plan_1"
    assert rows[0].external_subscription_id == "sub_plan_1"
    assert rows[0].external_transaction_id is None

    linked = await fetch(db_session, Booking, booking.id)
    assert linked.status == "completed"
    assert linked.linked_payment_id == rows[0].id
    assert (await fetch(db_session, BookingPayment, payment.id)).status == "paid"


@pytest.mark.asyncio
async def test_late_completion_does_not_revive_refunded_purchase(client: AsyncClient, db_session: AsyncSession):
    db_session.add(Purchase(external_session_id="cs_old", external_transaction_id="pi_1", status="refunded"))
    await db_session.commit()

    response = await post_event(client, make_event("checkout.session.completed", paid_session(session_id="cs_new")))

    assert response.json()["ok"] is True
    rows = await purchases(db_session)
    assert len(rows) == 1
    assert rows[0].status == "refunded"
    assert rows[0].external_session_id == "cs_old"


def insert_competitor_before(db: AsyncSession, monkeypatch, statement_type, **competitor):
    """Commit a competing purchase row right before the first matching write on purchases."""
    original_execute = db.execute
    state = {"fired": False}

    async def execute(statement, *args, **kwargs):
        if (
            not state["fired"]
            and isinstance(statement, statement_type)
            and statement.table.name == "purchases"
        ):
            state["fired"] = True
            await original_execute(insert(Purchase.__table__).values(status="paid", **competitor))
            await db.commit()
        return await original_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", execute)


@pytest.mark.asyncio
async def test_concurrent_insert_of_same_session_is_success(db_session: AsyncSession, monkeypatch):
    insert_competitor_before(
        db_session, monkeypatch, Insert, id="winner", external_session_id="cs_race", external_transaction_id="pi_race"
    )

    upsert = await upsert_purchase_from_session(db_session, paid_session(session_id="cs_race", payment_intent="pi_race"))

    assert upsert.outcome == UpsertOutcome.RACED
    assert upsert.purchase_id == "winner"
    rows = await purchases(db_session)
    assert len(rows) == 1
    assert rows[0].id == "winner"


@pytest.mark.asyncio
async def test_concurrent_session_claim_during_update_is_success(db_session: AsyncSession, monkeypatch):
    db_session.add(Purchase(id="older", external_session_id="cs_old", external_transaction_id="pi_9", status="paid"))
    await db_session.commit()
    insert_competitor_before(db_session, monkeypatch, Update, id="winner", external_session_id="cs_new")

    upsert = await upsert_purchase_from_session(db_session, paid_session(session_id="cs_new", payment_intent="pi_9"))

    assert upsert.outcome == UpsertOutcome.RACED
    assert upsert.purchase_id == "winner"
    older = await fetch(db_session, Purchase, "older")
    assert older.external_session_id == "cs_old"
    assert len(await purchases(db_session)) == 2


@pytest.mark.asyncio
async def test_linkage_failure_keeps_purchase_paid(
    client: AsyncClient, db_session: AsyncSession, booking: Booking, monkeypatch
):
    async def broken_linkage(db, **kwargs):
        raise RuntimeError("linkage store down")

    monkeypatch.setattr("app.services.reconciliation_service.link_booking_if_any", broken_linkage)

    response = await post_event(
        client,
        make_event("checkout.session.completed", paid_session(content_id=booking.content_id)),
    )

    assert response.status_code == 200
    assert response.json()["ok"] is True
    rows = await purchases(db_session)
    assert len(rows) == 1
    assert rows[0].status == "paid"
    assert (await fetch(db_session, Booking, booking.id)).linked_payment_id is None
