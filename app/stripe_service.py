import logging
from typing import Optional
from urllib.parse import urlencode

import stripe

from app.config import Settings
from app.providers import (
    FAILED,
    PENDING,
    SUCCEEDED,
    InitializeRequest,
    InitializeResult,
    PaymentAdapter,
    ProviderName,
    VerifyResult,
)

logger = logging.getLogger(__name__)


class StripeAdapter(PaymentAdapter):
    name = ProviderName.STRIPE

    def __init__(self, settings: Settings):
        self.settings = settings

    def initialize(self, request: InitializeRequest) -> InitializeResult:
        if not self.settings.stripe_secret_key:
            return InitializeResult(success=False, error="Stripe is not configured")

        try:
            intent = stripe.PaymentIntent.create(
                amount=request.amount_minor,
                currency=request.currency.lower(),
                automatic_payment_methods={"enabled": True},
                receipt_email=request.customer_email,
                metadata={"order_id": request.order_id, "payment_intent_id": request.payment_intent_id},
                idempotency_key=request.idempotency_key,
                api_key=self.settings.stripe_secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe initialize failed for order %s: %s", request.order_id, exc)
            return InitializeResult(success=False, error=exc.user_message or "Card payment unavailable")

        query = urlencode({
            "intent": intent.id,
            "client_secret": intent.client_secret,
            "callback": request.callback_url,
        })
        return InitializeResult(
            success=True,
            redirect_url=f"{self.settings.site_url}/checkout/card?{query}",
            provider_reference=intent.id,
        )

    def verify(self, reference: str) -> VerifyResult:
        if not self.settings.stripe_secret_key:
            return VerifyResult(success=False, status=FAILED, error="Stripe is not configured")

        try:
            intent = stripe.PaymentIntent.retrieve(reference, api_key=self.settings.stripe_secret_key)
        except stripe.StripeError as exc:
            logger.error("Stripe verify failed for %s: %s", reference, exc)
            return VerifyResult(success=False, status=PENDING, error="Verification failed")

        if intent.status == "succeeded":
            return VerifyResult(
                success=True,
                status=SUCCEEDED,
                amount_minor=intent.amount_received,
                transaction_id=getattr(intent, "latest_charge", None) or intent.id,
            )
        if intent.status == "canceled":
            return VerifyResult(success=False, status=FAILED, error="Payment canceled")
        return VerifyResult(success=False, status=PENDING)

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """Raises ValueError or stripe.SignatureVerificationError."""
        if not self.settings.stripe_webhook_secret:
            logger.error("Stripe webhook secret not configured.")
            raise ValueError("Stripe webhook secret not configured")
        return stripe.Webhook.construct_event(payload, signature, self.settings.stripe_webhook_secret)

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        try:
            self.construct_event(payload, signature)
        except (ValueError, stripe.SignatureVerificationError):
            return False
        return True
