from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import get_session
from .gateway import EsewaClient
from .reconciliation import SettlementService


def get_gateway_client(settings: Settings = Depends(get_settings)) -> EsewaClient:
    return EsewaClient(settings.status_url, timeout=settings.gateway_timeout_seconds)


def get_settlement_service(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    gateway: EsewaClient = Depends(get_gateway_client),
) -> SettlementService:
    return SettlementService(session, settings, gateway)
