import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictInt, field_validator

from app.providers import ProviderName


class InitializePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: uuid.UUID = Field(alias="orderId")
    amount_minor: StrictInt = Field(alias="amountMinor", gt=0)
    currency: str = Field("GHS", min_length=3, max_length=3)
    customer_email: EmailStr = Field(alias="customerEmail")
    customer_name: Optional[str] = Field(None, alias="customerName")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    provider: Optional[ProviderName] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: Optional[str] = Field(None, alias="paymentIntentId")
    reference: Optional[str] = None
    provider: Optional[str] = None
    order_id: Optional[str] = Field(None, alias="orderId")


class VerifyOtpRequest(BaseModel):
    reference: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    otp: str = Field(min_length=1)
    amount: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def amount_as_text(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return f"{v:.2f}"
        return v


class ProviderSettingsUpdate(BaseModel):
    display_name: Optional[str] = None
    is_enabled: Optional[bool] = None
    is_test_mode: Optional[bool] = None
    priority: Optional[int] = None
    supported_currencies: Optional[List[str]] = None

    @field_validator("supported_currencies")
    @classmethod
    def upper_currencies(cls, v):
        return [c.upper() for c in v] if v is not None else v
