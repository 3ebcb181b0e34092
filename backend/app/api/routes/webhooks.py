"""
Payment processor webhook.

Status codes are chosen for the processor's retry behaviour:
  400  bad signature, nothing was touched
  503  database unreachable, please retry
  200  everything else, including internal failures (retrying would fail
       the same way forever)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import SignatureInvalid
from app.core.logging import get_logger
from app.core.metrics import record_webhook
from app.db.session import get_db
from app.schemas.webhook import WebhookResponse
from app.services.cache_service import mark_event_processed, was_event_processed
from app.services.interfaces.payment_processor import PaymentProcessor
from app.services.processor_factory import get_payment_processor
from app.services.reconciliation_service import handle_event

logger = get_logger(__name__)
router = APIRouter(tags=["Webhooks"])


@router.post("/stripe/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    payload = await request.body()

    try:
        event = processor.verify_event(payload, stripe_signature)
    except SignatureInvalid as e:
        record_webhook("unverified", "rejected")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": e.message},
        )

    event_id = event.get("id")
    event_type = event.get("type") or "unknown"

    if await was_event_processed(event_id):
        record_webhook(event_type, "duplicate")
        logger.info("webhook_duplicate", event_id=event_id, event_type=event_type)
        return WebhookResponse(ok=True, event_type=event_type, duplicate=True)

    try:
        result = await handle_event(db, event)
    except (OperationalError, InterfaceError) as e:
        await db.rollback()
        record_webhook(event_type, "unavailable")
        logger.error("webhook_store_unavailable", event_id=event_id, event_type=event_type, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "error": "Store unavailable"},
        )
    except Exception as e:
        await db.rollback()
        record_webhook(event_type, "error")
        logger.exception("webhook_processing_failed", event_id=event_id, event_type=event_type, error=str(e))
        return WebhookResponse(ok=False, event_type=event_type, error="Webhook processing failed")

    await mark_event_processed(event_id, event_type)
    record_webhook(event_type, "handled" if result.handled else "ignored")
    return WebhookResponse(ok=True, event_type=event_type)
