import hashlib
import hmac
import logging
import time
from typing import Optional

import requests

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


class PaystackAdapter(PaymentAdapter):
    name = ProviderName.PAYSTACK

    def __init__(self, settings: Settings):
        self.settings = settings

    def _auth_headers(self):
        return {
            "Authorization": f"Bearer {self.settings.paystack_secret_key}",
            "Content-Type": "application/json",
        }

    def _json(self, r):
        data = r.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Paystack response: {data!r}")
        return data

    def initialize(self, request: InitializeRequest) -> InitializeResult:
        if not self.settings.paystack_secret_key:
            return InitializeResult(success=False, error="Paystack is not configured or enabled.")

        reference = f"pstk_{request.order_id}_{int(time.time() * 1000)}"
        payload = {
            "email": request.customer_email,
            "amount": request.amount_minor,
            "currency": request.currency.upper(),
            "reference": reference,
            "callback_url": request.callback_url,
            "metadata": {
                **request.metadata,
                "order_id": request.order_id,
                "custom_fields": [
                    {"display_name": "Order ID", "variable_name": "order_id", "value": request.order_id},
                ],
            },
        }
        try:
            r = requests.post(
                f"{self.settings.paystack_base_url}/transaction/initialize",
                headers=self._auth_headers(),
                json=payload,
                timeout=self.settings.timeout,
            )
            data = self._json(r)
        except (requests.RequestException, ValueError) as exc:
            logger.error("Paystack initialize failed for %s: %s", reference, exc)
            return InitializeResult(success=False, error="Network error connecting to Paystack")

        tx = data.get("data") if isinstance(data.get("data"), dict) else {}
        if not data.get("status"):
            logger.warning("Paystack rejected %s: %s", reference, data.get("message"))
            return InitializeResult(success=False, error=data.get("message") or "Paystack initialization failed")

        return InitializeResult(
            success=True,
            redirect_url=tx.get("authorization_url"),
            provider_reference=reference,
        )

    def verify(self, reference: str) -> VerifyResult:
        if not self.settings.paystack_secret_key:
            return VerifyResult(success=False, status=FAILED, error="Paystack configuration missing")

        try:
            r = requests.get(
                f"{self.settings.paystack_base_url}/transaction/verify/{reference}",
                headers=self._auth_headers(),
                timeout=self.settings.timeout,
            )
            data = self._json(r)
        except (requests.RequestException, ValueError) as exc:
            logger.error("Paystack verify failed for %s: %s", reference, exc)
            return VerifyResult(success=False, status=PENDING, error="Verification failed")

        if not data.get("status"):
            return VerifyResult(success=False, status=FAILED, error=data.get("message"))

        tx = data.get("data") if isinstance(data.get("data"), dict) else {}
        if tx.get("status") == "success":
            return VerifyResult(
                success=True,
                status=SUCCEEDED,
                amount_minor=tx.get("amount"),
                transaction_id=str(tx["id"]) if tx.get("id") is not None else None,
            )
        if tx.get("status") in ("pending", "ongoing"):
            return VerifyResult(success=False, status=PENDING)
        return VerifyResult(success=False, status=FAILED, error=tx.get("gateway_response"))

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        if not signature or not self.settings.paystack_secret_key:
            return False
        digest = hmac.new(self.settings.paystack_secret_key.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(digest, signature)
