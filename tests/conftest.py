import os
import itertools

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.config import Settings, get_settings
from app.database import Base, get_db
from app.dependencies import get_adapters
from app.main import app as fastapi_app
from app.models import PaymentProviderConfig
from app.providers import (
    InitializeResult,
    OtpResult,
    PaymentAdapter,
    ProviderName,
    VerifyResult,
)

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_payments.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

ORDER_ID = "11111111-1111-1111-1111-111111111111"


class FakeAdapter(PaymentAdapter):
    """Records calls and answers with whatever results the test sets."""

    _refs = itertools.count(1)

    def __init__(self, name=ProviderName.MOOLRE):
        self.name = name
        self.calls = []
        self.init_result = None
        self.verify_result = VerifyResult(success=False, status="pending")
        self.otp_result = OtpResult(success=True, message="Approve on your phone")

    def initialize(self, request):
        self.calls.append(("initialize", request))
        if self.init_result is not None:
            return self.init_result
        reference = f"fake_{request.order_id}_{next(self._refs)}"
        return InitializeResult(
            success=True,
            redirect_url=f"https://pay.example/checkout/{reference}",
            provider_reference=reference,
        )

    def verify(self, reference):
        self.calls.append(("verify", reference))
        return self.verify_result

    def verify_otp_and_pay(self, reference, phone, otp, amount, order_id):
        self.calls.append(("verify_otp_and_pay", reference, phone, otp, amount, order_id))
        return self.otp_result

    def called(self, operation):
        return [c for c in self.calls if c[0] == operation]


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(site_url="https://shop.example", jwt_secret="test-secret")


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def adapters(fake_adapter):
    return {
        ProviderName.MOOLRE: fake_adapter,
        ProviderName.PAYSTACK: FakeAdapter(ProviderName.PAYSTACK),
        ProviderName.STRIPE: FakeAdapter(ProviderName.STRIPE),
    }


def override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(settings, adapters):
    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    fastapi_app.dependency_overrides[get_adapters] = lambda: adapters

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


def add_provider(db, name="moolre", **fields):
    values = {
        "display_name": name.title(),
        "is_enabled": True,
        "is_primary": False,
        "priority": 1,
        "supported_currencies": ["GHS"],
    }
    values.update(fields)
    row = PaymentProviderConfig(provider=name, **values)
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def moolre_enabled(db):
    return add_provider(db, "moolre", is_primary=True)
