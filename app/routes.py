import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_adapters
from app.models import IntentStatus
from app.payments import confirm_otp, initialize_payment, make_idempotency_key, verify_payment
from app.providers import SUCCEEDED
from app.schemas import InitializePaymentRequest, VerifyOtpRequest, VerifyPaymentRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments")

PENDING_STATUSES = (IntentStatus.PENDING.value, IntentStatus.PROCESSING.value)


def _origin(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _redirect(request: Request, path: str, **params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(f"{_origin(request)}{path}?{query}", status_code=302)


@router.post("/initialize")
def initialize_payment_api(
    body: InitializePaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
    adapters=Depends(get_adapters),
):
    order_id = str(body.order_id)
    callback_url = f"{_origin(request)}/api/payments/verify?{urlencode({'orderId': order_id})}"

    try:
        outcome = initialize_payment(
            db,
            adapters,
            order_id=order_id,
            amount_minor=body.amount_minor,
            currency=body.currency,
            customer_email=body.customer_email,
            customer_name=body.customer_name,
            customer_phone=body.customer_phone,
            provider=body.provider.value if body.provider else None,
            metadata=body.metadata,
            callback_url=callback_url,
            idempotency_key=make_idempotency_key(order_id),
        )
    except Exception:
        logger.exception("Payment initialization error for order %s", order_id)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    if not outcome.success:
        return JSONResponse(status_code=400, content={"success": False, "error": outcome.error})

    return {
        "success": True,
        "paymentIntentId": outcome.payment_intent_id,
        "redirectUrl": outcome.redirect_url,
        "requiresOtp": outcome.requires_otp,
    }


@router.get("/verify")
def verify_payment_redirect(
    request: Request,
    order_id: Optional[str] = Query(None, alias="orderId"),
    reference: Optional[str] = None,
    trxref: Optional[str] = None,
    tx_ref: Optional[str] = None,
    payment_intent_id: Optional[str] = Query(None, alias="paymentIntentId"),
    db: Session = Depends(get_db),
    adapters=Depends(get_adapters),
):
    # Providers disagree on the name of the reference parameter.
    reference = reference or trxref or tx_ref

    if not order_id and not reference and not payment_intent_id:
        return RedirectResponse(f"{_origin(request)}/", status_code=302)

    try:
        result = verify_payment(
            db,
            adapters,
            payment_intent_id=payment_intent_id,
            provider_reference=reference,
            order_id=order_id,
        )
    except Exception:
        logger.exception("Payment verification error for order %s", order_id)
        return _redirect(request, "/checkout", error="verification_error", orderId=order_id)

    resolved_order = result.order_id or order_id
    if result.success and result.status == SUCCEEDED:
        return _redirect(request, "/order-confirmation", orderId=resolved_order, status="success")
    if result.status in PENDING_STATUSES:
        return _redirect(request, "/order-confirmation", orderId=resolved_order, status="pending")
    return _redirect(request, "/checkout", error="payment_failed", orderId=resolved_order)


@router.post("/verify")
def verify_payment_api(
    body: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    adapters=Depends(get_adapters),
):
    try:
        result = verify_payment(
            db,
            adapters,
            payment_intent_id=body.payment_intent_id,
            provider_reference=body.reference,
            provider=body.provider,
            order_id=body.order_id,
        )
    except Exception:
        logger.exception("Payment verification error")
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    response = {"success": result.success, "status": result.status, "orderId": result.order_id}
    if result.error:
        response["error"] = result.error
    return response


@router.post("/verify-otp")
def verify_otp_api(
    body: VerifyOtpRequest,
    db: Session = Depends(get_db),
    adapters=Depends(get_adapters),
):
    try:
        result = confirm_otp(db, adapters, body.reference, body.phone, body.otp, body.amount)
    except Exception:
        logger.exception("OTP verification error for %s", body.reference)
        return JSONResponse(status_code=500, content={"success": False, "error": "Verification failed"})

    if result.success:
        return {"success": True, "message": result.message}
    return {"success": False, "error": result.error}
