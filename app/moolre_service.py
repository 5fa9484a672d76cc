"""Moolre mobile-money adapter (Ghana)."""

import logging
import re
import secrets
import time
from typing import Any, Dict
from urllib.parse import urlencode

import requests

from app.config import Settings
from app.providers import (
    FAILED,
    PENDING,
    SUCCEEDED,
    InitializeRequest,
    InitializeResult,
    OtpResult,
    PaymentAdapter,
    ProviderName,
    VerifyResult,
    to_major,
)

logger = logging.getLogger(__name__)

OTP_REQUIRED = "TP14"
OTP_INVALID = "TP15"
MOCK_PREFIX = "moolre_mock_"

CHANNEL_CODES = {
    "MTN": "13",
    "VODAFONE": "11",
    "AIRTELTIGO": "12",
}

NETWORK_PREFIXES = {
    "MTN": ("024", "054", "055", "059"),
    "VODAFONE": ("020", "050"),
    "AIRTELTIGO": ("026", "027", "056", "057"),
}


def format_phone(phone: str) -> str:
    cleaned = re.sub(r"\D", "", phone)
    if cleaned.startswith("233"):
        return cleaned
    if cleaned.startswith("0"):
        return "233" + cleaned[1:]
    if len(cleaned) == 9:
        return "233" + cleaned
    return cleaned


def detect_network(phone: str) -> str:
    cleaned = re.sub(r"\D", "", phone)
    local = "0" + cleaned[-9:] if len(cleaned) >= 9 else cleaned
    for network, prefixes in NETWORK_PREFIXES.items():
        if local[:3] in prefixes:
            return network
    return "MTN"


def channel_for(phone: str) -> str:
    return CHANNEL_CODES[detect_network(phone)]


def _millis() -> int:
    return int(time.time() * 1000)


def _to_minor(amount):
    if amount is None:
        return None
    try:
        return int(round(float(amount) * 100))
    except (TypeError, ValueError):
        return None


class MoolreAdapter(PaymentAdapter):
    name = ProviderName.MOOLRE

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.moolre_api_user and s.moolre_api_pubkey and s.moolre_account_number)

    def _headers(self) -> Dict[str, str]:
        return {
            "X-API-USER": self.settings.moolre_api_user,
            "X-API-PUBKEY": self.settings.moolre_api_pubkey,
            "Content-Type": "application/json",
        }

    def _post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        r = requests.post(url, headers=self._headers(), json=body, timeout=self.settings.timeout)
        data = r.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Moolre response: {data!r}")
        return data

    def _site_url(self, path: str, **params) -> str:
        return f"{self.settings.site_url}{path}?{urlencode(params)}"

    def initialize(self, request: InitializeRequest) -> InitializeResult:
        if self.settings.moolre_mock:
            logger.info("Moolre mock mode for order %s", request.order_id)
            reference = f"{MOCK_PREFIX}{_millis()}_{secrets.token_hex(3)}"
            return InitializeResult(
                success=True,
                redirect_url=self._site_url(
                    "/mock-payment",
                    ref=reference,
                    amount=request.amount_minor,
                    currency=request.currency,
                    callback=request.callback_url,
                ),
                provider_reference=reference,
            )

        if not self.configured:
            return InitializeResult(success=False, error="Moolre payment not configured")
        if not request.customer_phone:
            return InitializeResult(
                success=False, error="Customer phone number is required for Moolre payments"
            )

        payer = format_phone(request.customer_phone)
        reference = f"moolre_{request.order_id}_{_millis()}"
        amount = to_major(request.amount_minor)
        body = {
            "type": 1,
            "channel": channel_for(request.customer_phone),
            "currency": request.currency or "GHS",
            "payer": payer,
            "amount": amount,
            "externalref": reference,
            "reference": f"Order {request.order_id}",
            "accountnumber": self.settings.moolre_account_number,
        }

        try:
            logger.info("Moolre initiating payment %s for %s", reference, amount)
            data = self._post(self.settings.moolre_api_url, body)
        except (requests.RequestException, ValueError) as exc:
            logger.error("Moolre initialize failed for %s: %s", reference, exc)
            return InitializeResult(success=False, error="Moolre payment service unavailable")

        logger.info("Moolre initialize response %s: %s", reference, data.get("code"))
        if data.get("status") != 1:
            return InitializeResult(
                success=False, error=data.get("message") or "Payment initialization failed"
            )

        if data.get("code") == OTP_REQUIRED:
            return InitializeResult(
                success=True,
                redirect_url=self._site_url(
                    "/checkout/verify-otp", ref=reference, phone=payer, callback=request.callback_url
                ),
                provider_reference=reference,
                requires_otp=True,
            )

        return InitializeResult(
            success=True,
            redirect_url=self._site_url("/checkout/waiting", ref=reference, callback=request.callback_url),
            provider_reference=reference,
        )

    def verify_otp_and_pay(
        self, reference: str, phone: str, otp: str, amount: str, order_id: str
    ) -> OtpResult:
        if not self.configured:
            return OtpResult(success=False, error="Moolre not configured")

        body = {
            "type": 1,
            "channel": channel_for(phone),
            "currency": "GHS",
            "payer": format_phone(phone),
            "amount": amount,
            "externalref": reference,
            "accountnumber": self.settings.moolre_account_number,
        }

        try:
            verified = self._post(self.settings.moolre_api_url, dict(body, otpcode=otp))
            if verified.get("status") != 1 or verified.get("code") == OTP_INVALID:
                return OtpResult(success=False, error=verified.get("message") or "Invalid OTP")

            # OTP accepted, now trigger the charge itself
            paid = self._post(self.settings.moolre_api_url, dict(body, reference=f"Order {order_id}"))
        except (requests.RequestException, ValueError) as exc:
            logger.error("Moolre OTP/payment failed for %s: %s", reference, exc)
            return OtpResult(success=False, error="Payment service error")

        logger.info("Moolre charge response %s: %s", reference, paid.get("code"))
        if paid.get("status") == 1:
            return OtpResult(
                success=True,
                message=paid.get("message") or "Payment request sent. Please approve on your phone.",
            )
        return OtpResult(success=False, error=paid.get("message") or "Payment request failed")

    def verify(self, reference: str) -> VerifyResult:
        if reference.startswith(MOCK_PREFIX):
            return VerifyResult(
                success=True, status=SUCCEEDED, transaction_id=f"mock_txn_{_millis()}", mock=True
            )

        if not self.configured:
            return VerifyResult(success=False, status=PENDING, error="Moolre not configured")

        body = {
            "type": 1,
            "idtype": 1,
            "id": reference,
            "accountnumber": self.settings.moolre_account_number,
        }
        try:
            data = self._post(self.settings.moolre_status_url, body)
        except (requests.RequestException, ValueError) as exc:
            logger.error("Moolre status query failed for %s: %s", reference, exc)
            return VerifyResult(success=False, status=PENDING, error="Moolre payment service unavailable")

        tx = data.get("data")
        if not isinstance(tx, dict):
            tx = {}
        tx_status = str(tx.get("txstatus", ""))
        if data.get("status") == 1 and tx_status == "1":
            return VerifyResult(
                success=True,
                status=SUCCEEDED,
                amount_minor=_to_minor(tx.get("amount")),
                transaction_id=str(tx.get("transactionid") or reference),
            )
        if tx_status == "2":
            return VerifyResult(success=False, status=FAILED, error=data.get("message") or "Payment failed")
        return VerifyResult(success=False, status=PENDING)
