"""Provider-agnostic payment adapter interface.

Callers only branch on the result shapes defined here, never on which
provider produced them. A new provider is added by implementing
``PaymentAdapter`` and registering it under a ``ProviderName``.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional


class ProviderName(str, enum.Enum):
    MOOLRE = "moolre"
    PAYSTACK = "paystack"
    STRIPE = "stripe"


SUCCEEDED = "succeeded"
PENDING = "pending"
FAILED = "failed"


@dataclass
class InitializeRequest:
    payment_intent_id: str
    order_id: str
    amount_minor: int
    currency: str
    customer_email: str
    callback_url: str
    idempotency_key: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InitializeResult:
    success: bool
    redirect_url: Optional[str] = None
    provider_reference: Optional[str] = None
    requires_otp: bool = False
    error: Optional[str] = None


@dataclass
class VerifyResult:
    success: bool
    status: str
    amount_minor: Optional[int] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    # Simulated payments carry no amount to check against.
    mock: bool = False

    def as_payload(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "amount_minor": self.amount_minor,
            "transaction_id": self.transaction_id,
            "error": self.error,
            "mock": self.mock,
        }


@dataclass
class OtpResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


class PaymentAdapter(ABC):
    name: ProviderName

    @abstractmethod
    def initialize(self, request: InitializeRequest) -> InitializeResult:
        """Start a payment. Never raises, failures come back as ``success=False``."""

    @abstractmethod
    def verify(self, reference: str) -> VerifyResult:
        """Query the provider for the current state of ``reference``."""

    def verify_otp_and_pay(
        self, reference: str, phone: str, otp: str, amount: str, order_id: str
    ) -> OtpResult:
        return OtpResult(success=False, error=f"OTP payments are not supported by {self.name.value}")

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        return False


def to_major(amount_minor: int) -> str:
    """10050 -> "100.50"."""
    return f"{Decimal(amount_minor) / 100:.2f}"
