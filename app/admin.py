from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.auth import verify_token
from app.database import get_db
from app.models import PaymentIntent, PaymentProviderConfig, utcnow
from app.providers import ProviderName
from app.schemas import ProviderSettingsUpdate

router = APIRouter(prefix="/api/admin", dependencies=[Depends(verify_token)])

DISPLAY_NAMES = {
    ProviderName.MOOLRE: "Moolre (Mobile Money)",
    ProviderName.PAYSTACK: "Paystack",
    ProviderName.STRIPE: "Stripe (Cards)",
}


def provider_to_dict(row: PaymentProviderConfig):
    return {
        "provider": row.provider,
        "display_name": row.display_name,
        "is_enabled": row.is_enabled,
        "is_primary": row.is_primary,
        "is_test_mode": row.is_test_mode,
        "priority": row.priority,
        "supported_currencies": row.supported_currencies,
    }


def intent_to_dict(intent: PaymentIntent):
    return {
        "id": intent.id,
        "orderId": intent.order_id,
        "provider": intent.provider,
        "providerReference": intent.provider_reference,
        "amountMinor": intent.amount_minor,
        "currency": intent.currency,
        "status": intent.status,
        "createdAt": intent.created_at.isoformat() if intent.created_at else None,
        "updatedAt": intent.updated_at.isoformat() if intent.updated_at else None,
    }


@router.get("/payment-providers")
def list_providers(db: Session = Depends(get_db)):
    rows = db.query(PaymentProviderConfig).order_by(PaymentProviderConfig.priority.asc()).all()
    return [provider_to_dict(row) for row in rows]


@router.put("/payment-providers/{provider}")
def update_provider(provider: ProviderName, body: ProviderSettingsUpdate, db: Session = Depends(get_db)):
    row = db.get(PaymentProviderConfig, provider.value)
    if row is None:
        row = PaymentProviderConfig(provider=provider.value, display_name=DISPLAY_NAMES[provider])
        db.add(row)

    for field, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(row, field, value)
    row.updated_at = utcnow()
    db.commit()
    db.refresh(row)
    return provider_to_dict(row)


@router.post("/payment-providers/{provider}/primary")
def set_primary_provider(provider: ProviderName, db: Session = Depends(get_db)):
    row = db.get(PaymentProviderConfig, provider.value)
    if row is None:
        raise HTTPException(status_code=404, detail="Payment provider not found")

    db.query(PaymentProviderConfig).filter(
        PaymentProviderConfig.provider != provider.value
    ).update({"is_primary": False}, synchronize_session=False)
    row.is_primary = True
    row.is_enabled = True
    row.updated_at = utcnow()
    db.commit()
    db.refresh(row)
    return provider_to_dict(row)


@router.get("/payment-intents")
def list_intents(
    order_id: Optional[str] = Query(None, alias="orderId"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    query = db.query(PaymentIntent)
    if order_id:
        query = query.filter_by(order_id=order_id)
    intents = query.order_by(PaymentIntent.created_at.desc()).limit(limit).all()
    return [intent_to_dict(intent) for intent in intents]
