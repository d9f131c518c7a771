from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification_service.dispatcher import build_dispatcher
from services.payment_service.gateway import PaymentGateway, get_payment_gateway
from shared.config.database import AsyncSessionLocal, get_db
from .service import OrderLifecycleService
from .side_effects import SideEffectRunner


def get_order_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> OrderLifecycleService:
    return OrderLifecycleService(db, gateway)


def get_side_effect_runner() -> SideEffectRunner:
    return SideEffectRunner(AsyncSessionLocal, build_dispatcher())
