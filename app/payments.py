"""Payment intent lifecycle: initiation, verification and OTP confirmation.

Intent status only ever moves forward::

    pending -> processing -> succeeded
       |           |
       +-----------+------> failed

Every status write goes through ``transition_intent`` which applies it as a
single conditional UPDATE, so a stale callback can never regress an intent
that another request already moved on.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings
from app.models import (
    IntentStatus,
    Payment,
    PaymentEvent,
    PaymentIntent,
    PaymentProviderConfig,
    new_id,
    utcnow,
)
from app.moolre_service import MoolreAdapter
from app.paystack_service import PaystackAdapter
from app.providers import (
    FAILED,
    PENDING,
    SUCCEEDED,
    InitializeRequest,
    OtpResult,
    PaymentAdapter,
    ProviderName,
    to_major,
)
from app.stripe_service import StripeAdapter

logger = logging.getLogger(__name__)

Adapters = Mapping[ProviderName, PaymentAdapter]

STATUS_RANK = {
    IntentStatus.PENDING.value: 0,
    IntentStatus.PROCESSING.value: 1,
    IntentStatus.SUCCEEDED.value: 2,
    IntentStatus.FAILED.value: 2,
}

DEFAULT_OTP_MESSAGE = "Payment prompt sent. Please approve on your phone."


@dataclass
class InitiationOutcome:
    success: bool
    payment_intent_id: Optional[str] = None
    redirect_url: Optional[str] = None
    provider_reference: Optional[str] = None
    requires_otp: bool = False
    error: Optional[str] = None


@dataclass
class VerificationOutcome:
    success: bool
    status: str
    order_id: Optional[str] = None
    amount_minor: Optional[int] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None


@lru_cache(maxsize=8)
def build_adapters(settings: Settings) -> Dict[ProviderName, PaymentAdapter]:
    return {
        ProviderName.MOOLRE: MoolreAdapter(settings),
        ProviderName.PAYSTACK: PaystackAdapter(settings),
        ProviderName.STRIPE: StripeAdapter(settings),
    }


def adapter_for(adapters: Adapters, provider: str) -> Optional[PaymentAdapter]:
    try:
        return adapters.get(ProviderName(provider))
    except ValueError:
        return None


def make_idempotency_key(order_id: str) -> str:
    # Unique per call, so retries for one order are never deduplicated here.
    return f"init_{order_id}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def select_provider(db: Session, currency: str, preferred: Optional[str] = None) -> Optional[ProviderName]:
    rows = (
        db.query(PaymentProviderConfig)
        .filter(PaymentProviderConfig.is_enabled.is_(True))
        .order_by(PaymentProviderConfig.priority.asc())
        .all()
    )
    candidates = []
    for row in rows:
        try:
            name = ProviderName(row.provider)
        except ValueError:
            logger.warning("Ignoring unknown payment provider %r", row.provider)
            continue
        if currency in (row.supported_currencies or ["GHS"]):
            candidates.append((name, row))

    if preferred:
        for name, _ in candidates:
            if name.value == preferred:
                return name
    for name, row in candidates:
        if row.is_primary:
            return name
    return candidates[0][0] if candidates else None


def record_event(
    db: Session,
    provider: str,
    event_type: str,
    payload: Dict[str, Any],
    payment_intent_id: Optional[str] = None,
    provider_event_id: Optional[str] = None,
    processed: bool = False,
) -> PaymentEvent:
    event = PaymentEvent(
        provider=provider,
        event_type=event_type,
        payload=payload,
        payment_intent_id=payment_intent_id,
        provider_event_id=provider_event_id,
        processed=processed,
    )
    db.add(event)
    db.commit()
    return event


def transition_intent(db: Session, intent_id: str, new_status: str) -> bool:
    """Move an intent forward. Returns False when the move would regress it."""
    rank = STATUS_RANK[new_status]
    lower = [s for s, r in STATUS_RANK.items() if r < rank]

    result = db.execute(
        update(PaymentIntent)
        .where(PaymentIntent.id == intent_id, PaymentIntent.status.in_(lower))
        .values(status=new_status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        return True

    current = db.query(PaymentIntent.status).filter(PaymentIntent.id == intent_id).scalar()
    if current == new_status:
        return True
    logger.warning("Rejected payment intent %s transition %s -> %s", intent_id, current, new_status)
    return False


def mark_succeeded(db: Session, intent: PaymentIntent, transaction_id: Optional[str] = None) -> bool:
    """Move an intent to succeeded and capture its single Payment row.

    Concurrent success paths (redirect verify racing a webhook) may both get
    here; the unique ``payments.payment_intent_id`` lets exactly one insert win.
    """
    intent_id, order_id = intent.id, intent.order_id
    if not transition_intent(db, intent_id, SUCCEEDED):
        return False

    db.add(Payment(
        payment_intent_id=intent_id,
        order_id=order_id,
        provider=intent.provider,
        provider_transaction_id=transaction_id,
        amount_minor=intent.amount_minor,
        currency=intent.currency,
        status="captured",
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Payment for intent %s already captured", intent_id)
        return True
    logger.info("Payment intent %s succeeded for order %s", intent_id, order_id)
    return True


def initialize_payment(
    db: Session,
    adapters: Adapters,
    *,
    order_id: str,
    amount_minor: int,
    currency: str,
    customer_email: str,
    callback_url: str,
    idempotency_key: str,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    provider: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> InitiationOutcome:
    provider_name = select_provider(db, currency, provider)
    if provider_name is None:
        return InitiationOutcome(success=False, error="No payment provider available for this currency")

    adapter = adapters.get(provider_name)
    if adapter is None:
        return InitiationOutcome(success=False, error=f"Payment adapter not found: {provider_name.value}")

    existing = db.query(PaymentIntent).filter_by(idempotency_key=idempotency_key).first()
    if existing and existing.status == IntentStatus.PENDING.value:
        return InitiationOutcome(
            success=True,
            payment_intent_id=existing.id,
            redirect_url=existing.redirect_url,
            provider_reference=existing.provider_reference,
        )

    # The id is fixed up front so the provider can echo it back in metadata.
    intent = PaymentIntent(
        id=new_id(),
        order_id=order_id,
        provider=provider_name.value,
        amount_minor=amount_minor,
        currency=currency,
        customer_email=customer_email,
        customer_name=customer_name,
        customer_phone=customer_phone,
        callback_url=callback_url,
        idempotency_key=idempotency_key,
        metadata_=metadata or {},
    )

    request = InitializeRequest(
        payment_intent_id=intent.id,
        order_id=order_id,
        amount_minor=amount_minor,
        currency=currency,
        customer_email=customer_email,
        customer_name=customer_name,
        customer_phone=customer_phone,
        callback_url=callback_url,
        idempotency_key=idempotency_key,
        metadata={**(metadata or {}), "payment_intent_id": intent.id},
    )
    try:
        result = adapter.initialize(request)
    except Exception:
        logger.exception("Payment initialization error for order %s", order_id)
        return InitiationOutcome(success=False, error="Payment initialization failed")

    if not result.success:
        logger.info("Provider %s declined order %s: %s", provider_name.value, order_id, result.error)
        return InitiationOutcome(success=False, error=result.error)

    intent.provider_reference = result.provider_reference
    intent.redirect_url = result.redirect_url
    intent.status = (IntentStatus.PENDING if result.requires_otp else IntentStatus.PROCESSING).value
    db.add(intent)
    db.commit()
    logger.info("Created payment intent %s (%s) for order %s", intent.id, intent.status, order_id)

    return InitiationOutcome(
        success=True,
        payment_intent_id=intent.id,
        redirect_url=result.redirect_url,
        provider_reference=result.provider_reference,
        requires_otp=result.requires_otp,
    )


def resolve_intent(
    db: Session,
    payment_intent_id: Optional[str] = None,
    provider_reference: Optional[str] = None,
    provider: Optional[str] = None,
    order_id: Optional[str] = None,
) -> Optional[PaymentIntent]:
    if payment_intent_id:
        return db.get(PaymentIntent, payment_intent_id)
    if provider_reference:
        query = db.query(PaymentIntent).filter_by(provider_reference=provider_reference)
        if provider:
            query = query.filter_by(provider=provider)
        return query.first()
    if order_id:
        # Lossy: an order may have several intents, take the latest.
        return (
            db.query(PaymentIntent)
            .filter_by(order_id=order_id)
            .order_by(PaymentIntent.created_at.desc())
            .first()
        )
    return None


def verify_payment(
    db: Session,
    adapters: Adapters,
    payment_intent_id: Optional[str] = None,
    provider_reference: Optional[str] = None,
    provider: Optional[str] = None,
    order_id: Optional[str] = None,
) -> VerificationOutcome:
    intent = resolve_intent(db, payment_intent_id, provider_reference, provider, order_id)
    if intent is None:
        return VerificationOutcome(success=False, status=FAILED, error="Payment intent not found")

    if intent.status == IntentStatus.SUCCEEDED.value:
        return VerificationOutcome(
            success=True, status=SUCCEEDED, order_id=intent.order_id, amount_minor=intent.amount_minor
        )
    if intent.status == IntentStatus.FAILED.value:
        return VerificationOutcome(success=False, status=FAILED, order_id=intent.order_id, error="Payment failed")

    if not intent.provider_reference:
        transition_intent(db, intent.id, FAILED)
        return VerificationOutcome(
            success=False, status=FAILED, order_id=intent.order_id, error="Payment reference missing"
        )

    adapter = adapter_for(adapters, intent.provider)
    if adapter is None:
        return VerificationOutcome(
            success=False, status=FAILED, order_id=intent.order_id, error="Payment adapter not found"
        )

    try:
        result = adapter.verify(intent.provider_reference)
    except Exception:
        logger.exception("Payment verification error for intent %s", intent.id)
        return VerificationOutcome(success=False, status=FAILED, order_id=intent.order_id, error="Verification failed")

    record_event(
        db,
        intent.provider,
        f"verification.{result.status}",
        result.as_payload(),
        payment_intent_id=intent.id,
        processed=True,
    )

    if result.success and result.status == SUCCEEDED:
        if not result.mock and result.amount_minor != intent.amount_minor:
            logger.error(
                "Amount mismatch on intent %s: expected %s, received %s",
                intent.id, intent.amount_minor, result.amount_minor,
            )
            return VerificationOutcome(
                success=False, status=FAILED, order_id=intent.order_id, error="Amount verification failed"
            )
        if mark_succeeded(db, intent, result.transaction_id):
            return VerificationOutcome(
                success=True,
                status=SUCCEEDED,
                order_id=intent.order_id,
                amount_minor=intent.amount_minor,
                transaction_id=result.transaction_id,
            )

    elif result.status == FAILED:
        transition_intent(db, intent.id, FAILED)

    db.refresh(intent)
    if intent.status == IntentStatus.SUCCEEDED.value:
        return VerificationOutcome(success=True, status=SUCCEEDED, order_id=intent.order_id,
                                   amount_minor=intent.amount_minor)
    status = intent.status if result.status == PENDING else FAILED
    return VerificationOutcome(success=False, status=status, order_id=intent.order_id, error=result.error)


def confirm_otp(
    db: Session,
    adapters: Adapters,
    reference: str,
    phone: str,
    otp: str,
    amount: Optional[str] = None,
) -> OtpResult:
    intent = db.query(PaymentIntent).filter_by(provider_reference=reference).first()
    if intent is None:
        logger.warning("No payment intent for OTP reference %s, using it as the order id", reference)
        order_id = reference
        provider = ProviderName.MOOLRE.value
    else:
        order_id = intent.order_id
        provider = intent.provider

    if intent is not None and intent.amount_minor:
        display_amount = to_major(intent.amount_minor)
    else:
        display_amount = amount or "0"

    adapter = adapter_for(adapters, provider)
    if adapter is None:
        return OtpResult(success=False, error="Payment adapter not found")

    try:
        result = adapter.verify_otp_and_pay(reference, phone, otp, display_amount, order_id)
    except Exception:
        logger.exception("OTP confirmation error for reference %s", reference)
        return OtpResult(success=False, error="OTP verification failed")
    if not result.success:
        return OtpResult(success=False, error=result.error or "OTP verification failed")

    if intent is not None:
        transition_intent(db, intent.id, IntentStatus.PROCESSING.value)
    return OtpResult(success=True, message=result.message or DEFAULT_OTP_MESSAGE)
