import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_adapters
from app.models import PaymentIntent
from app.payments import mark_succeeded, record_event, transition_intent, verify_payment
from app.providers import FAILED, SUCCEEDED, ProviderName

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks")

MOOLRE_SUCCESS_CODES = ("TP00", "TP01", "SUCCESS")
MOOLRE_FAILURE_CODES = ("FAILED", "TP99")


def handle_moolre_event(db: Session, adapters, body: Dict[str, Any]) -> Dict[str, Any]:
    """Treat a Moolre callback as a hint and settle it through the status query.

    Callbacks are unsigned, so the intent only moves once Moolre's own status
    endpoint confirms the outcome and the amount.
    """
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    status = body.get("status")
    code = body.get("code")
    reference = body.get("externalref") or data.get("externalref")
    transaction_id = body.get("transactionid") or data.get("transactionid")

    event = record_event(
        db,
        ProviderName.MOOLRE.value,
        f"webhook.{code or status}",
        body,
        provider_event_id=str(transaction_id) if transaction_id is not None else None,
    )

    intent = None
    if reference:
        intent = db.query(PaymentIntent).filter_by(
            provider=ProviderName.MOOLRE.value, provider_reference=reference
        ).first()
    if intent is None:
        logger.error("Moolre webhook for unknown reference %s", reference)
        return {"received": True, "error": "Intent not found"}

    intent_id = intent.id
    event.payment_intent_id = intent_id
    event.processed = True
    db.commit()

    claimed_success = str(status) == "1" and code in MOOLRE_SUCCESS_CODES
    claimed_failure = str(status) == "0" or code in MOOLRE_FAILURE_CODES
    if claimed_success or claimed_failure:
        outcome = verify_payment(db, adapters, payment_intent_id=intent_id)
        if claimed_success and outcome.status != SUCCEEDED:
            logger.warning(
                "Moolre webhook claimed success for intent %s, status query says %s",
                intent_id, outcome.status,
            )

    return {"success": True, "received": True, "intentId": intent_id}


@router.post("/moolre")
async def moolre_webhook(request: Request, db: Session = Depends(get_db), adapters=Depends(get_adapters)):
    # Always acknowledge, Moolre retries anything else.
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Invalid payload received on Moolre webhook.")
        return {"received": True, "error": "Invalid payload"}
    if not isinstance(body, dict):
        return {"received": True, "error": "Invalid payload"}

    try:
        return handle_moolre_event(db, adapters, body)
    except Exception:
        logger.exception("Error processing Moolre webhook")
        db.rollback()
        return {"received": True, "error": "Processing error"}


@router.get("/moolre")
def moolre_webhook_check(challenge: Optional[str] = None):
    if challenge:
        return PlainTextResponse(challenge)
    return {
        "status": "Moolre webhook endpoint active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: str = Header(None),
    db: Session = Depends(get_db),
    adapters=Depends(get_adapters),
):
    payload = await request.body()
    if not adapters[ProviderName.PAYSTACK].verify_webhook_signature(payload, x_paystack_signature):
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    data = event.get("data") or {}
    record_event(
        db,
        ProviderName.PAYSTACK.value,
        f"webhook.{event.get('event')}",
        event,
        provider_event_id=str(data["id"]) if data.get("id") is not None else None,
        processed=True,
    )

    if event.get("event") == "charge.success":
        intent = db.query(PaymentIntent).filter_by(
            provider=ProviderName.PAYSTACK.value, provider_reference=data.get("reference")
        ).first()
        if intent is None:
            logger.error("Paystack webhook for unknown reference %s", data.get("reference"))
        elif data.get("amount") != intent.amount_minor:
            logger.error("Amount mismatch on intent %s: expected %s, received %s",
                         intent.id, intent.amount_minor, data.get("amount"))
        else:
            mark_succeeded(db, intent, str(data["id"]) if data.get("id") is not None else None)

    return {"ok": True}


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
    adapters=Depends(get_adapters),
):
    payload = await request.body()

    try:
        event = adapters[ProviderName.STRIPE].construct_event(payload, stripe_signature)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    obj = event["data"]["object"]
    intent = db.query(PaymentIntent).filter_by(
        provider=ProviderName.STRIPE.value, provider_reference=obj["id"]
    ).first()
    record_event(
        db,
        ProviderName.STRIPE.value,
        f"webhook.{event['type']}",
        {"type": event["type"], "object_id": obj["id"], "status": obj.get("status")},
        payment_intent_id=intent.id if intent else None,
        provider_event_id=event.get("id"),
        processed=intent is not None,
    )

    if intent:
        if event["type"] == "payment_intent.succeeded":
            mark_succeeded(db, intent, obj.get("latest_charge"))
        elif event["type"] == "payment_intent.payment_failed":
            transition_intent(db, intent.id, FAILED)

    return {"ok": True}
