from typing import Dict

from fastapi import Depends

from app.config import Settings, get_settings
from app.payments import build_adapters
from app.providers import PaymentAdapter, ProviderName


def get_adapters(settings: Settings = Depends(get_settings)) -> Dict[ProviderName, PaymentAdapter]:
    return build_adapters(settings)
