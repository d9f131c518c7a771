from fastapi import APIRouter, Depends, Request

from services.order_service.dependencies import get_order_service
from services.order_service.service import OrderLifecycleService
from shared.config.settings import PAYMENT_RATE_LIMIT
from shared.security import limiter
from .gateway import PaymentGateway, get_payment_gateway
from .schemas import PaymentCallback, PaymentIntentCreate, PaymentIntentResponse, PaymentRecorded
from .service import PaymentService

# Checkout calls these before the customer has an account, so they are public and rate limited
router = APIRouter()
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running"}


@router.post("/intent", response_model=PaymentIntentResponse)
@limiter.limit(PAYMENT_RATE_LIMIT)
async def create_payment_intent(
    request: Request,
    payload: PaymentIntentCreate,
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return await PaymentService(gateway).create_intent(payload)


@router.post("/callback", response_model=PaymentRecorded)
@limiter.limit(PAYMENT_RATE_LIMIT)
async def payment_callback(
    request: Request,
    payload: PaymentCallback,
    lifecycle: OrderLifecycleService = Depends(get_order_service),
):
    return await PaymentService.handle_callback(lifecycle, payload)
