import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# Force-load .env (Windows-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

MOOLRE_API_URL = "https://api.moolre.com/open/transact/payment"
MOOLRE_STATUS_URL = "https://api.moolre.com/open/transact/status"
PAYSTACK_BASE_URL = "https://api.paystack.co"


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    site_url: str = "http://localhost:3000"
    connect_timeout: float = 5
    read_timeout: float = 25

    moolre_api_user: Optional[str] = None
    moolre_api_pubkey: Optional[str] = None
    moolre_account_number: Optional[str] = None
    moolre_mock: bool = False
    moolre_api_url: str = MOOLRE_API_URL
    moolre_status_url: str = MOOLRE_STATUS_URL

    paystack_secret_key: Optional[str] = None
    paystack_base_url: str = PAYSTACK_BASE_URL

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    jwt_secret: Optional[str] = None

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)


def get_settings() -> Settings:
    """Read settings from the environment at call time."""
    return Settings(
        site_url=os.getenv("SITE_URL", "http://localhost:3000").rstrip("/"),
        connect_timeout=float(os.getenv("PROVIDER_CONNECT_TIMEOUT", "5")),
        read_timeout=float(os.getenv("PROVIDER_READ_TIMEOUT", "25")),
        moolre_api_user=os.getenv("MOOLRE_API_USER") or None,
        moolre_api_pubkey=os.getenv("MOOLRE_API_PUBKEY") or None,
        moolre_account_number=os.getenv("MOOLRE_ACCOUNT_NUMBER") or None,
        moolre_mock=_flag("MOOLRE_MOCK"),
        moolre_api_url=os.getenv("MOOLRE_API_URL", MOOLRE_API_URL),
        moolre_status_url=os.getenv("MOOLRE_STATUS_URL", MOOLRE_STATUS_URL),
        paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY") or None,
        paystack_base_url=os.getenv("PAYSTACK_BASE_URL", PAYSTACK_BASE_URL).rstrip("/"),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        jwt_secret=os.getenv("JWT_SECRET") or None,
    )
