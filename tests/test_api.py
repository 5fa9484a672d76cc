from app.models import PaymentIntent
from app.payments import make_idempotency_key
from app.providers import InitializeResult, OtpResult, VerifyResult

from conftest import ORDER_ID, TestingSessionLocal


def initialize(client, **overrides):
    payload = {"orderId": ORDER_ID, "amountMinor": 5000, "customerEmail": "a@b.com"}
    payload.update(overrides)
    return client.post("/api/payments/initialize", json=payload)


def get_intent(intent_id):
    db = TestingSessionLocal()
    intent = db.get(PaymentIntent, intent_id)
    db.close()
    return intent


def test_initialize_payment_success(client, fake_adapter, moolre_enabled):
    response = initialize(client, customerPhone="0244123456", metadata={"cart": "c-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["paymentIntentId"]
    assert body["redirectUrl"].startswith("https://pay.example/checkout/")
    assert body["requiresOtp"] is False

    (_, request), = fake_adapter.called("initialize")
    assert request.order_id == ORDER_ID
    assert request.currency == "GHS"
    assert request.callback_url == f"http://testserver/api/payments/verify?orderId={ORDER_ID}"
    assert request.metadata == {"cart": "c-1", "payment_intent_id": body["paymentIntentId"]}

    intent = get_intent(body["paymentIntentId"])
    assert intent.status == "processing"
    assert intent.amount_minor == 5000
    assert intent.provider == "moolre"
    assert intent.customer_phone == "0244123456"


def test_initialize_reports_every_invalid_field(client, fake_adapter, moolre_enabled):
    response = client.post(
        "/api/payments/initialize",
        json={"orderId": "not-a-uuid", "amountMinor": 0, "currency": "CEDI"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Invalid request"
    fields = {d["field"] for d in body["details"]}
    assert {"orderId", "amountMinor", "currency", "customerEmail"} <= fields
    assert fake_adapter.calls == []


def test_initialize_missing_email_and_negative_amount(client, moolre_enabled):
    response = client.post("/api/payments/initialize", json={"orderId": ORDER_ID, "amountMinor": -5})

    assert response.status_code == 400
    fields = [d["field"] for d in response.json()["details"]]
    assert "amountMinor" in fields
    assert "customerEmail" in fields


def test_initialize_provider_failure_persists_nothing(client, fake_adapter, moolre_enabled):
    fake_adapter.init_result = InitializeResult(success=False, error="Payer wallet not found")

    response = initialize(client)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Payer wallet not found"}
    db = TestingSessionLocal()
    assert db.query(PaymentIntent).count() == 0
    db.close()


def test_initialize_without_enabled_provider(client, fake_adapter):
    response = initialize(client)

    assert response.status_code == 400
    assert response.json()["error"] == "No payment provider available for this currency"
    assert fake_adapter.calls == []


def test_initialize_unknown_provider_is_a_validation_error(client, moolre_enabled):
    response = initialize(client, provider="bitcoin")

    assert response.status_code == 400
    assert [d["field"] for d in response.json()["details"]] == ["provider"]


def test_initialize_unexpected_error_is_generic_500(client, mocker, moolre_enabled):
    mocker.patch("app.routes.initialize_payment", side_effect=RuntimeError("db exploded"))

    response = initialize(client)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}


def test_otp_provider_leaves_intent_pending(client, fake_adapter, moolre_enabled):
    fake_adapter.init_result = InitializeResult(
        success=True,
        redirect_url="https://shop.example/checkout/verify-otp?ref=otp_ref_1",
        provider_reference="otp_ref_1",
        requires_otp=True,
    )

    response = initialize(client)

    assert response.json()["requiresOtp"] is True
    assert get_intent(response.json()["paymentIntentId"]).status == "pending"


def test_idempotency_keys_are_distinct_within_one_tick(mocker):
    mocker.patch("app.payments.time.time", return_value=1700000000.0)

    first = make_idempotency_key(ORDER_ID)
    second = make_idempotency_key(ORDER_ID)

    assert first != second
    assert first.startswith(f"init_{ORDER_ID}_1700000000000_")


def test_retried_initialize_creates_a_second_intent(client, fake_adapter, moolre_enabled):
    first = initialize(client).json()
    second = initialize(client).json()

    assert first["paymentIntentId"] != second["paymentIntentId"]
    keys = [request.idempotency_key for _, request in fake_adapter.called("initialize")]
    assert len(set(keys)) == 2
    db = TestingSessionLocal()
    assert db.query(PaymentIntent).filter_by(order_id=ORDER_ID).count() == 2
    db.close()


def test_verify_redirects_on_success(client, fake_adapter, moolre_enabled):
    intent_id = initialize(client).json()["paymentIntentId"]
    fake_adapter.verify_result = VerifyResult(success=True, status="succeeded", amount_minor=5000)

    response = client.get(
        "/api/payments/verify", params={"paymentIntentId": intent_id}, follow_redirects=False
    )

    assert response.status_code == 302
    assert response.headers["location"] == (
        f"http://testserver/order-confirmation?orderId={ORDER_ID}&status=success"
    )
    assert get_intent(intent_id).status == "succeeded"


def test_verify_redirects_pending(client, fake_adapter, moolre_enabled):
    intent_id = initialize(client).json()["paymentIntentId"]
    fake_adapter.verify_result = VerifyResult(success=False, status="pending")

    response = client.get(
        "/api/payments/verify", params={"paymentIntentId": intent_id}, follow_redirects=False
    )

    assert response.headers["location"] == (
        f"http://testserver/order-confirmation?orderId={ORDER_ID}&status=pending"
    )
    assert get_intent(intent_id).status == "processing"


def test_verify_redirects_to_checkout_on_failure(client, fake_adapter, moolre_enabled):
    intent_id = initialize(client).json()["paymentIntentId"]
    fake_adapter.verify_result = VerifyResult(success=False, status="failed", error="Declined")

    response = client.get(
        "/api/payments/verify", params={"paymentIntentId": intent_id}, follow_redirects=False
    )

    assert response.headers["location"] == (
        f"http://testserver/checkout?error=payment_failed&orderId={ORDER_ID}"
    )
    assert get_intent(intent_id).status == "failed"


def test_verify_without_identifiers_goes_home(client, fake_adapter):
    response = client.get("/api/payments/verify", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "http://testserver/"
    assert fake_adapter.calls == []


def test_verify_accepts_provider_reference_aliases(client, fake_adapter, moolre_enabled):
    intent_id = initialize(client).json()["paymentIntentId"]
    reference = get_intent(intent_id).provider_reference
    fake_adapter.verify_result = VerifyResult(success=True, status="succeeded", amount_minor=5000)

    response = client.get("/api/payments/verify", params={"trxref": reference}, follow_redirects=False)

    assert response.headers["location"].endswith(f"orderId={ORDER_ID}&status=success")
    assert fake_adapter.called("verify") == [("verify", reference)]


def test_verify_unknown_reference_fails_without_provider_call(client, fake_adapter):
    response = client.get(
        "/api/payments/verify", params={"tx_ref": "nope"}, follow_redirects=False
    )

    assert response.headers["location"] == "http://testserver/checkout?error=payment_failed"
    assert fake_adapter.calls == []


def test_verify_falls_back_to_latest_intent_for_order(client, fake_adapter, moolre_enabled):
    initialize(client)
    latest = initialize(client).json()["paymentIntentId"]
    fake_adapter.verify_result = VerifyResult(success=True, status="succeeded", amount_minor=5000)

    client.get("/api/payments/verify", params={"orderId": ORDER_ID}, follow_redirects=False)

    assert get_intent(latest).status == "succeeded"


def test_verify_error_redirects_with_verification_error(client, mocker):
    mocker.patch("app.routes.verify_payment", side_effect=RuntimeError("timeout"))

    response = client.get("/api/payments/verify", params={"orderId": ORDER_ID}, follow_redirects=False)

    assert response.headers["location"] == (
        f"http://testserver/checkout?error=verification_error&orderId={ORDER_ID}"
    )


def test_verify_post_returns_json(client, fake_adapter, moolre_enabled):
    intent_id = initialize(client).json()["paymentIntentId"]
    fake_adapter.verify_result = VerifyResult(success=True, status="succeeded", amount_minor=5000)

    response = client.post("/api/payments/verify", json={"paymentIntentId": intent_id})

    assert response.status_code == 200
    assert response.json() == {"success": True, "status": "succeeded", "orderId": ORDER_ID}


def test_verify_post_unknown_intent(client):
    response = client.post("/api/payments/verify", json={"reference": "missing", "provider": "moolre"})

    assert response.json() == {
        "success": False,
        "status": "failed",
        "orderId": None,
        "error": "Payment intent not found",
    }


def test_verify_otp_moves_intent_to_processing(client, fake_adapter, moolre_enabled):
    fake_adapter.init_result = InitializeResult(
        success=True, redirect_url="https://shop.example/otp", provider_reference="otp_ref_2", requires_otp=True
    )
    intent_id = initialize(client, amountMinor=10050).json()["paymentIntentId"]

    response = client.post(
        "/api/payments/verify-otp",
        json={"reference": "otp_ref_2", "phone": "233244123456", "otp": "123456"},
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Approve on your phone"}
    (_, reference, phone, otp, amount, order_id), = fake_adapter.called("verify_otp_and_pay")
    assert (reference, phone, otp) == ("otp_ref_2", "233244123456", "123456")
    assert amount == "100.50"
    assert order_id == ORDER_ID
    assert get_intent(intent_id).status == "processing"


def test_verify_otp_failure_surfaces_provider_error(client, fake_adapter, moolre_enabled):
    fake_adapter.init_result = InitializeResult(
        success=True, redirect_url="https://shop.example/otp", provider_reference="otp_ref_3", requires_otp=True
    )
    intent_id = initialize(client).json()["paymentIntentId"]
    fake_adapter.otp_result = OtpResult(success=False, error="Invalid OTP")

    response = client.post(
        "/api/payments/verify-otp", json={"reference": "otp_ref_3", "phone": "0244123456", "otp": "000000"}
    )

    assert response.status_code == 200
    assert response.json() == {"success": False, "error": "Invalid OTP"}
    assert get_intent(intent_id).status == "pending"


def test_verify_otp_without_intent_uses_reference_as_order(client, fake_adapter):
    response = client.post(
        "/api/payments/verify-otp",
        json={"reference": "ORDER-77", "phone": "0244123456", "otp": "123456", "amount": 12},
    )

    assert response.json()["success"] is True
    (_, _, _, _, amount, order_id), = fake_adapter.called("verify_otp_and_pay")
    assert order_id == "ORDER-77"
    assert amount == "12.00"


def test_verify_otp_defaults_amount_to_zero(client, fake_adapter):
    client.post("/api/payments/verify-otp", json={"reference": "r", "phone": "0244123456", "otp": "1"})

    (_, _, _, _, amount, _), = fake_adapter.called("verify_otp_and_pay")
    assert amount == "0"


def test_verify_otp_requires_reference_phone_and_otp(client, fake_adapter):
    response = client.post("/api/payments/verify-otp", json={"reference": "r"})

    assert response.status_code == 400
    assert {d["field"] for d in response.json()["details"]} == {"phone", "otp"}
    assert fake_adapter.calls == []


def test_verify_otp_adapter_crash_returns_failure(client, fake_adapter, moolre_enabled, mocker):
    fake_adapter.init_result = InitializeResult(
        success=True, redirect_url="https://shop.example/otp", provider_reference="otp_ref_9", requires_otp=True
    )
    intent_id = initialize(client).json()["paymentIntentId"]
    mocker.patch.object(fake_adapter, "verify_otp_and_pay", side_effect=AttributeError("'list' object"))

    response = client.post(
        "/api/payments/verify-otp", json={"reference": "otp_ref_9", "phone": "0244123456", "otp": "123456"}
    )

    assert response.status_code == 200
    assert response.json() == {"success": False, "error": "OTP verification failed"}
    assert get_intent(intent_id).status == "pending"
