import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from app.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


class IntentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id = Column(String, primary_key=True, default=new_id)
    order_id = Column(String, index=True, nullable=False)  # not unique, one per attempt
    provider = Column(String, nullable=False)
    provider_reference = Column(String, unique=True, index=True)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="GHS")
    status = Column(String, nullable=False, default=IntentStatus.PENDING.value)
    customer_email = Column(String)
    customer_name = Column(String)
    customer_phone = Column(String)
    redirect_url = Column(String)
    callback_url = Column(String)
    idempotency_key = Column(String, index=True)
    metadata_ = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_intent_id = Column(String, index=True)
    provider = Column(String, nullable=False)
    event_type = Column(String, nullable=False)   # verification.<status> | webhook.<code>
    provider_event_id = Column(String)
    payload = Column(JSON, default=dict)
    processed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=new_id)
    payment_intent_id = Column(String, unique=True, index=True, nullable=False)
    order_id = Column(String, index=True)
    provider = Column(String, nullable=False)
    provider_transaction_id = Column(String)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String, nullable=False, default="captured")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class PaymentProviderConfig(Base):
    __tablename__ = "payment_providers"

    provider = Column(String, primary_key=True)
    display_name = Column(String, nullable=False)
    is_enabled = Column(Boolean, default=False, nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    is_test_mode = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=100, nullable=False)
    supported_currencies = Column(JSON, default=lambda: ["GHS"], nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
