import secrets
import time

import structlog

from services.order_service.service import OrderLifecycleService
from shared.config.settings import GATEWAY_CURRENCY
from .gateway import PaymentGateway, to_minor_units
from .schemas import PaymentCallback, PaymentIntentCreate, PaymentIntentResponse, PaymentRecorded

logger = structlog.get_logger(__name__)


def _merchant_order_id() -> str:
    return f"RZ{int(time.time() * 1000)}{secrets.token_hex(5)[:9]}"


class PaymentService:
    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    async def create_intent(self, data: PaymentIntentCreate) -> PaymentIntentResponse:
        amount_minor = to_minor_units(data.amount)
        merchant_order_id = _merchant_order_id()
        is_cod = data.payment_method.strip().lower() == "cod"
        notes = {
            "customer_name": data.customer_name,
            "email": str(data.email),
            "phone": data.phone,
            "seller_token": data.seller_token or "",
            "coupon_code": data.coupon_code or "",
            "upfront_amount": f"upfront:{data.upfront_amount}" if data.upfront_amount else "",
            "remaining_amount": f"remaining:{data.remaining_amount}" if data.remaining_amount else "",
            "payment_method": data.payment_method,
            "order_type": "COD with upfront" if is_cod else "Online payment",
        }

        intent = await self.gateway.create_payment_intent(
            amount_minor, data.currency or GATEWAY_CURRENCY, merchant_order_id, notes
        )
        logger.info(
            "payment_intent_created",
            gateway_order_id=intent.id,
            merchant_order_id=merchant_order_id,
            amount_minor=amount_minor,
        )
        return PaymentIntentResponse(
            gateway_order_id=intent.id,
            merchant_order_id=merchant_order_id,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
            key_id=getattr(self.gateway, "key_id", ""),
        )

    @staticmethod
    async def handle_callback(lifecycle: OrderLifecycleService, data: PaymentCallback) -> PaymentRecorded:
        order = await lifecycle.record_payment(
            data.gateway_order_id, data.gateway_payment_id, data.gateway_signature
        )
        return PaymentRecorded(
            message="Payment verified successfully",
            gateway_order_id=data.gateway_order_id,
            gateway_payment_id=data.gateway_payment_id,
            order_id=order.id if order else None,
        )
