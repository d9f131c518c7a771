"""
Order lifecycle engine.

Every mutation follows the same path: load the order, check the guards,
ask the state machine for the next state, then persist the changes together
with their outbox events in a single commit. Stock and notification effects
run later through SideEffectRunner; only the refund talks to the outside
world inline, because the caller has to know whether money moved.
"""
import secrets
import time
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification_service.templates import NotificationEvent
from services.payment_service.gateway import PaymentGateway, to_minor_units
from shared.errors import (
    DomainError,
    GatewayError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from shared.observability import (
    ecomm_cancellations_total,
    ecomm_order_transitions_total,
    ecomm_orders_created_total,
    ecomm_refunds_total,
)
from . import fulfilment
from .enums import (
    CancellationStatus,
    CancelledBy,
    Decision,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
    RevenueStatus,
    normalize_payment_method,
    normalize_payment_status,
)
from .invoice import render_invoice_html
from .models import Order, new_order_id
from .repository import OrderRepository
from .schemas import AddressIn, OrderCreate
from .side_effects import SideEffectKind, notify_event, stock_events
from .state_machine import (
    charged_amount,
    ensure_not_frozen,
    ensure_transition,
    is_terminal,
    next_payment_status,
    refund_amount_for,
    requires_refund,
    revenue_at_creation,
    revenue_on_payment,
    revenue_on_status_change,
)

logger = structlog.get_logger(__name__)

DEFAULT_CANCELLATION_REASON = "User requested cancellation"
REFUND_REASON = "Customer requested refund"

_ADDRESS_PARTS = ("street", "city", "state", "pincode", "country")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _merchant_refund_id() -> str:
    return f"RF{int(time.time() * 1000)}{secrets.token_hex(3).upper()}"


def _parse_decision(action: str) -> Decision:
    try:
        return Decision((action or "").strip().lower())
    except ValueError:
        raise ValidationError("Invalid action. Must be 'approve' or 'reject'", ["action"])


def _collect_address(data: OrderCreate) -> dict:
    """Accepts either a nested address object or a street line with flat parts."""
    flat = {
        "city": data.city,
        "state": data.state,
        "pincode": data.pincode,
        "country": data.country,
    }
    if isinstance(data.address, AddressIn):
        nested = data.address.model_dump()
        address = {part: nested.get(part) or flat.get(part) for part in _ADDRESS_PARTS}
    else:
        address = {"street": data.address, **flat}
    return {part: (value.strip() if isinstance(value, str) else value) for part, value in address.items()}


class OrderLifecycleService:
    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway

    async def _load(self, order_id: str) -> Order:
        order = await OrderRepository.get_order(self.db, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    # ------------------------------------------------------------------
    # Creation and queries
    # ------------------------------------------------------------------

    async def create_order(self, data: OrderCreate) -> Order:
        address = _collect_address(data)

        missing = [
            name
            for name, value in (
                ("customer_name", data.customer_name),
                ("email", data.email),
                ("phone", data.phone),
                ("address", address["street"]),
                ("city", address["city"]),
                ("state", address["state"]),
                ("pincode", address["pincode"]),
                ("country", address["country"]),
                ("items", data.items or None),
                ("total_amount", data.total_amount),
                ("payment_method", data.payment_method),
                ("payment_status", data.payment_status),
            )
            if _blank(value)
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

        items = []
        for index, item in enumerate(data.items):
            bad = [
                f"items[{index}].{name}"
                for name, value in (("name", item.name), ("price", item.price), ("quantity", item.quantity))
                if _blank(value)
            ]
            if bad:
                raise ValidationError("Each item must have name, price and quantity", bad)
            if item.price < 0 or item.quantity <= 0:
                raise ValidationError(
                    "Item price must not be negative and quantity must be positive",
                    [f"items[{index}]"],
                )
            items.append(item.model_dump())

        if data.total_amount <= 0:
            raise ValidationError("Total amount must be greater than 0", ["total_amount"])

        method = normalize_payment_method(data.payment_method)
        if method is None:
            raise ValidationError("Payment method must be 'cod' or 'online'", ["payment_method"])

        upfront = float(data.upfront_amount or 0) if method == PaymentMethod.COD else 0.0
        remaining = float(data.remaining_amount or 0) if method == PaymentMethod.COD else 0.0
        if upfront < 0:
            raise ValidationError("Upfront amount must not be negative", ["upfront_amount"])
        if upfront > 0:
            if upfront >= data.total_amount:
                raise ValidationError("Upfront amount must be less than total amount", ["upfront_amount"])
            expected = round(data.total_amount - upfront, 2)
            if remaining and abs(remaining - expected) > 0.01:
                raise ValidationError(
                    "Upfront and remaining amounts must add up to the total amount",
                    ["remaining_amount"],
                )
            remaining = expected

        payment_status = normalize_payment_status(data.payment_status, method, upfront)
        revenue = revenue_at_creation(method, payment_status, data.total_amount, upfront, data.commission)

        now = _now()
        tracking_number = fulfilment.generate_tracking_number(now)
        courier = fulfilment.get_courier_provider(address["state"], data.total_amount)

        order = Order(
            id=new_order_id(),
            customer_name=data.customer_name.strip(),
            email=str(data.email).strip().lower(),
            phone=data.phone.strip(),
            address=address,
            items=items,
            total_amount=data.total_amount,
            payment_method=method.value,
            payment_status=payment_status.value,
            upfront_amount=upfront,
            remaining_amount=remaining,
            commission=data.commission or 0,
            seller_token=data.seller_token,
            coupon_code=data.coupon_code,
            gateway_order_id=data.gateway_order_id,
            gateway_payment_id=data.gateway_payment_id,
            transaction_id=data.transaction_id or data.gateway_payment_id,
            payment_completed_at=now if payment_status == PaymentStatus.COMPLETED else None,
            order_status=OrderStatus.PROCESSING.value,
            revenue_status=revenue.status.value,
            revenue_amount=revenue.amount,
            admin_received_amount=revenue.admin_received,
            revenue_earned_at=now if revenue.status == RevenueStatus.CONFIRMED else None,
            revenue_confirmed_at=now if revenue.status == RevenueStatus.CONFIRMED else None,
            tracking_number=tracking_number,
            courier_provider=courier,
            courier_tracking_url=fulfilment.generate_tracking_url(tracking_number, courier),
            estimated_delivery_date=fulfilment.calculate_estimated_delivery_date(now, address["state"]),
            invoice_number=fulfilment.generate_invoice_number(now),
            invoice_generated_at=now,
            created_at=now,
            updated_at=now,
        )

        events = stock_events(order.id, items, SideEffectKind.DECREMENT_STOCK)
        events.append(notify_event(order.id, NotificationEvent.ORDER_CREATED))
        order = await OrderRepository.create_order(self.db, order, events)

        ecomm_orders_created_total.labels(payment_method=order.payment_method).inc()
        logger.info(
            "order_created",
            order_id=order.id,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            revenue_status=order.revenue_status,
            total_amount=order.total_amount,
        )
        return order

    async def get_order(self, order_id: str) -> Order:
        return await self._load(order_id)

    async def list_orders_by_email(self, email: str):
        if _blank(email):
            raise ValidationError("Email is required", ["email"])
        return await OrderRepository.list_by_email(self.db, email)

    async def list_orders(self, status: Optional[str] = None, limit: int = 50, skip: int = 0):
        if status:
            try:
                status = OrderStatus(status).value
            except ValueError:
                raise ValidationError("Invalid order status", ["status"])
        return await OrderRepository.list_orders(self.db, status=status, limit=limit, skip=skip)

    # ------------------------------------------------------------------
    # Status and revenue
    # ------------------------------------------------------------------

    async def update_status(self, order_id: str, new_status: str) -> Order:
        try:
            target = OrderStatus((new_status or "").strip().lower())
        except ValueError:
            raise ValidationError("Invalid order status", ["order_status"])

        order = await self._load(order_id)
        ensure_not_frozen(order, "update")
        ensure_transition(order.order_status, target)

        now = _now()
        revenue = revenue_on_status_change(order, target)
        payment_status = next_payment_status(order, target)
        changes = {
            "order_status": target.value,
            "payment_status": payment_status,
            "revenue_status": revenue.status.value,
            "revenue_amount": revenue.amount,
            "admin_received_amount": revenue.admin_received,
        }
        if payment_status == PaymentStatus.COMPLETED and order.payment_status != PaymentStatus.COMPLETED:
            changes["payment_completed_at"] = now
        if revenue.status == RevenueStatus.EARNED and order.revenue_status != RevenueStatus.EARNED:
            changes["revenue_earned_at"] = now
        if target == OrderStatus.DELIVERED:
            changes["actual_delivery_date"] = now
        elif target == OrderStatus.CANCELLED:
            changes["cancelled_at"] = now
            changes["cancelled_by"] = CancelledBy.ADMIN.value

        previous = order.order_status
        order = await OrderRepository.save(
            self.db, order, changes, [notify_event(order.id, NotificationEvent.STATUS_CHANGED)]
        )

        ecomm_order_transitions_total.labels(to_status=target.value).inc()
        logger.info(
            "order_status_updated",
            order_id=order.id,
            from_status=previous,
            to_status=order.order_status,
            payment_status=order.payment_status,
            revenue_status=order.revenue_status,
        )
        return order

    async def confirm_revenue(
        self, order_id: str, admin_received_amount: Optional[float], admin: str
    ) -> Order:
        order = await self._load(order_id)
        ensure_not_frozen(order, "confirm revenue for")

        if order.order_status != OrderStatus.DELIVERED:
            raise IllegalTransitionError("Revenue can only be confirmed for delivered orders")
        if order.revenue_status == RevenueStatus.CONFIRMED:
            raise IllegalTransitionError("Revenue already confirmed for this order")
        if order.revenue_status != RevenueStatus.EARNED:
            raise IllegalTransitionError(
                f"Revenue cannot be confirmed while it is '{order.revenue_status}'"
            )

        is_cod = order.payment_method == PaymentMethod.COD
        if admin_received_amount is not None:
            amount = admin_received_amount
        elif is_cod and not order.upfront_amount:
            amount = order.revenue_amount
        else:
            amount = order.admin_received_amount

        now = _now()
        changes = {
            "revenue_status": RevenueStatus.CONFIRMED.value,
            "admin_received_amount": amount,
            "revenue_confirmed_at": now,
        }
        if is_cod:
            changes.update(
                payment_status=PaymentStatus.COMPLETED.value,
                cod_confirmed_by=admin,
                cod_confirmed_at=now,
            )

        order = await OrderRepository.save(
            self.db, order, changes, [notify_event(order.id, NotificationEvent.REVENUE_CONFIRMED)]
        )
        logger.info("revenue_confirmed", order_id=order.id, amount=amount, confirmed_by=admin)
        return order

    async def record_payment(
        self, gateway_order_id: str, payment_id: str, signature: str
    ) -> Optional[Order]:
        """
        Applies a verified gateway callback to the matching order.

        Returns None when no order carries the gateway order id yet; the
        storefront creates the order after the callback in that flow.
        """
        if not self.gateway.verify_callback(gateway_order_id, payment_id, signature):
            logger.warning("payment_verification_failed", gateway_order_id=gateway_order_id)
            raise ValidationError("Payment verification failed", ["gateway_signature"])

        order = await OrderRepository.find_by_gateway_order_id(self.db, gateway_order_id)
        if order is None:
            logger.info("payment_verified_without_order", gateway_order_id=gateway_order_id)
            return None

        if order.payment_status == PaymentStatus.COMPLETED and order.gateway_payment_id == payment_id:
            logger.info("payment_already_recorded", order_id=order.id, payment_id=payment_id)
            return order

        now = _now()
        changes = {
            "payment_status": PaymentStatus.COMPLETED.value,
            "transaction_id": payment_id,
            "gateway_order_id": gateway_order_id,
            "gateway_payment_id": payment_id,
            "gateway_signature": signature,
            "payment_completed_at": now,
        }
        if order.cancellation_status != CancellationStatus.APPROVED:
            revenue = revenue_on_payment(order)
            changes.update(
                revenue_status=revenue.status.value,
                revenue_amount=revenue.amount,
                admin_received_amount=revenue.admin_received,
            )
            if revenue.status == RevenueStatus.CONFIRMED and order.revenue_status != RevenueStatus.CONFIRMED:
                changes.update(revenue_earned_at=now, revenue_confirmed_at=now)

        order = await OrderRepository.save(self.db, order, changes)
        logger.info(
            "payment_recorded",
            order_id=order.id,
            payment_id=payment_id,
            revenue_status=order.revenue_status,
        )
        return order

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def request_cancellation(
        self, order_id: str, reason: Optional[str] = None, cod_only: bool = False
    ) -> Order:
        order = await self._load(order_id)
        ensure_not_frozen(order, "cancel")

        if cod_only:
            if order.payment_method != PaymentMethod.COD:
                raise ValidationError("This cancellation is only available for COD orders", ["payment_method"])
            if order.order_status == OrderStatus.DELIVERED:
                raise IllegalTransitionError("Cannot cancel delivered orders")
            if is_terminal(order.order_status):
                raise IllegalTransitionError("Order is already cancelled")
        elif order.order_status != OrderStatus.PROCESSING:
            raise IllegalTransitionError(
                f"Order cannot be cancelled. Current status: {order.order_status}"
            )

        if order.cancellation_status == CancellationStatus.REQUESTED:
            raise IllegalTransitionError("Cancellation request already submitted")

        # A request after a rejection starts over
        changes = {
            "cancellation_requested": True,
            "cancellation_reason": (reason or "").strip() or DEFAULT_CANCELLATION_REASON,
            "cancellation_status": CancellationStatus.REQUESTED.value,
            "cancellation_requested_at": _now(),
            "cancellation_approved_by": None,
            "cancellation_approved_at": None,
            "cancellation_rejection_reason": None,
        }
        order = await OrderRepository.save(
            self.db, order, changes, [notify_event(order.id, NotificationEvent.CANCELLATION_REQUESTED)]
        )
        logger.info("cancellation_requested", order_id=order.id, cod_only=cod_only)
        return order

    async def decide_cancellation(
        self,
        order_id: str,
        action: str,
        rejection_reason: Optional[str],
        admin: str,
    ) -> Order:
        decision = _parse_decision(action)
        if decision == Decision.REJECT and _blank(rejection_reason):
            raise ValidationError("Rejection reason is required", ["rejection_reason"])

        order = await self._load(order_id)
        if order.cancellation_status != CancellationStatus.REQUESTED:
            raise IllegalTransitionError("No pending cancellation request for this order")

        now = _now()
        if decision == Decision.REJECT:
            changes = {
                "cancellation_status": CancellationStatus.REJECTED.value,
                "cancellation_rejection_reason": rejection_reason.strip(),
                "cancellation_approved_by": admin,
                "cancellation_approved_at": now,
            }
            events = [notify_event(order.id, NotificationEvent.CANCELLATION_REJECTED)]
        else:
            if is_terminal(order.order_status):
                raise IllegalTransitionError(
                    f"Cannot cancel an order that is already {order.order_status}"
                )
            changes = {
                "order_status": OrderStatus.CANCELLED.value,
                "payment_status": next_payment_status(order, OrderStatus.CANCELLED),
                "cancellation_status": CancellationStatus.APPROVED.value,
                "cancellation_approved_by": admin,
                "cancellation_approved_at": now,
                "cancelled_by": CancelledBy.USER.value,
                "cancelled_at": now,
            }
            # Online revenue stays as it is until the refund completes
            if order.payment_method == PaymentMethod.COD:
                revenue = revenue_on_status_change(order, OrderStatus.CANCELLED)
                changes.update(
                    revenue_status=revenue.status.value,
                    revenue_amount=revenue.amount,
                    admin_received_amount=revenue.admin_received,
                )
            if requires_refund(order):
                changes.update(
                    refund_status=RefundStatus.PENDING.value,
                    refund_amount=charged_amount(order),
                    refund_method=self.gateway.name,
                )
            events = stock_events(order.id, order.items, SideEffectKind.RESTORE_STOCK)
            events.append(notify_event(order.id, NotificationEvent.CANCELLATION_APPROVED))

        order = await OrderRepository.save(self.db, order, changes, events)

        ecomm_cancellations_total.labels(decision=decision.value).inc()
        logger.info(
            "cancellation_decided",
            order_id=order.id,
            decision=decision.value,
            decided_by=admin,
            refund_status=order.refund_status,
        )
        return order

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    def _check_refundable(self, order: Order) -> None:
        is_cod = order.payment_method == PaymentMethod.COD

        if order.order_status != OrderStatus.CANCELLED:
            raise IllegalTransitionError("Refunds can only be processed for cancelled orders")
        if is_cod and not order.upfront_amount:
            raise IllegalTransitionError("COD order has no upfront payment to refund")
        if is_cod and not (order.gateway_order_id or order.transaction_id):
            raise IllegalTransitionError("No completed upfront payment found for this COD order")
        if not is_cod and order.payment_status != PaymentStatus.COMPLETED:
            raise IllegalTransitionError("Payment was not completed for this order")
        if not is_cod and not order.transaction_id:
            raise IllegalTransitionError("No transaction ID found for this order")
        if order.refund_status == RefundStatus.COMPLETED:
            raise IllegalTransitionError("Refund already processed for this order")
        if order.refund_status == RefundStatus.PROCESSING:
            raise IllegalTransitionError("Refund is already being processed")

    async def _resolve_payment_id(self, order: Order) -> Optional[str]:
        if order.gateway_payment_id:
            return order.gateway_payment_id

        if order.gateway_order_id:
            try:
                payments = await self.gateway.fetch_payments_for_order(order.gateway_order_id)
            except GatewayError as e:
                logger.warning(
                    "payment_lookup_failed",
                    order_id=order.id,
                    gateway_order_id=order.gateway_order_id,
                    error=e.detail,
                )
            else:
                captured = [p for p in payments if p.get("status") == "captured"] or payments
                if captured:
                    return captured[0]["id"]

        # Online orders store the captured payment id as their transaction id
        if order.payment_method != PaymentMethod.COD and order.transaction_id != order.gateway_order_id:
            return order.transaction_id
        return None

    async def _fail_refund(self, order: Order, reason: str) -> None:
        await OrderRepository.save(
            self.db,
            order,
            {"refund_status": RefundStatus.FAILED.value, "refund_failed_reason": reason},
        )
        ecomm_refunds_total.labels(outcome="failed").inc()
        logger.error("refund_failed", order_id=order.id, reason=reason)

    async def process_refund(self, order_id: str) -> tuple[Order, float]:
        order = await self._load(order_id)
        self._check_refundable(order)

        amount = refund_amount_for(order)
        amount_minor = to_minor_units(amount)

        merchant_refund_id = _merchant_refund_id()
        claimed = await OrderRepository.claim_refund(
            self.db,
            order,
            {
                "merchant_refund_id": merchant_refund_id,
                "refund_initiated_at": _now(),
                "refund_failed_reason": None,
            },
        )
        if not claimed:
            raise IllegalTransitionError("Refund is already being processed")
        logger.info("refund_started", order_id=order.id, merchant_refund_id=merchant_refund_id, amount=amount)

        payment_id = await self._resolve_payment_id(order)
        if not payment_id:
            reason = "Payment ID not found. Cannot process refund."
            await self._fail_refund(order, reason)
            raise GatewayError(reason)

        try:
            result = await self.gateway.refund(payment_id, amount_minor, REFUND_REASON)
        except Exception as e:
            reason = e.detail if isinstance(e, DomainError) else str(e) or type(e).__name__
            await self._fail_refund(order, reason)
            raise GatewayError(reason) from e

        now = _now()
        changes = {
            "refund_status": RefundStatus.COMPLETED.value,
            "refund_transaction_id": result.refund_id,
            "refund_completed_at": now,
            "refund_amount": amount,
            "gateway_payment_id": payment_id,
        }
        if order.payment_method == PaymentMethod.COD:
            changes.update(
                revenue_status=RevenueStatus.CANCELLED.value,
                revenue_amount=0.0,
                admin_received_amount=0.0,
            )
        else:
            changes["revenue_status"] = RevenueStatus.REFUNDED.value

        order = await OrderRepository.save(
            self.db, order, changes, [notify_event(order.id, NotificationEvent.REFUND_COMPLETED)]
        )
        ecomm_refunds_total.labels(outcome="completed").inc()
        logger.info(
            "refund_completed",
            order_id=order.id,
            refund_id=result.refund_id,
            merchant_refund_id=merchant_refund_id,
            amount=amount,
        )
        return order, amount

    # ------------------------------------------------------------------
    # Returns, tracking, invoice
    # ------------------------------------------------------------------

    async def request_return(self, order_id: str, reason: Optional[str]) -> Order:
        if _blank(reason):
            raise ValidationError("Return reason is required", ["reason"])

        order = await self._load(order_id)
        if order.order_status != OrderStatus.DELIVERED:
            raise IllegalTransitionError("Only delivered orders can be returned")
        if order.return_status == ReturnStatus.REQUESTED:
            raise IllegalTransitionError("A return request is already pending for this order")
        if order.return_status not in (ReturnStatus.NONE, ReturnStatus.REJECTED):
            raise IllegalTransitionError(f"Return already {order.return_status}")

        changes = {
            "return_requested": True,
            "return_reason": reason.strip(),
            "return_requested_at": _now(),
            "return_status": ReturnStatus.REQUESTED.value,
            "return_rejection_reason": None,
        }
        order = await OrderRepository.save(
            self.db, order, changes, [notify_event(order.id, NotificationEvent.RETURN_REQUESTED)]
        )
        logger.info("return_requested", order_id=order.id)
        return order

    async def decide_return(
        self, order_id: str, action: str, rejection_reason: Optional[str], admin: str
    ) -> Order:
        decision = _parse_decision(action)
        if decision == Decision.REJECT and _blank(rejection_reason):
            raise ValidationError("Rejection reason is required", ["rejection_reason"])

        order = await self._load(order_id)
        if order.return_status != ReturnStatus.REQUESTED:
            raise IllegalTransitionError("No pending return request for this order")

        changes = {"return_approved_by": admin, "return_approved_at": _now()}
        if decision == Decision.APPROVE:
            changes["return_status"] = ReturnStatus.APPROVED.value
        else:
            changes["return_status"] = ReturnStatus.REJECTED.value
            changes["return_rejection_reason"] = rejection_reason.strip()

        order = await OrderRepository.save(self.db, order, changes)
        logger.info("return_decided", order_id=order.id, decision=decision.value, decided_by=admin)
        return order

    async def get_tracking(self, order_id: str) -> dict:
        order = await self._load(order_id)
        return {
            "id": order.id,
            "order_status": order.order_status,
            "tracking_number": order.tracking_number,
            "courier_provider": order.courier_provider,
            "courier_tracking_url": order.courier_tracking_url,
            "estimated_delivery_date": order.estimated_delivery_date,
            "actual_delivery_date": order.actual_delivery_date,
            "delivery_notes": order.delivery_notes,
            "timeline": fulfilment.build_timeline(order),
        }

    async def render_invoice(self, order_id: str) -> str:
        order = await self._load(order_id)
        order = await OrderRepository.save(
            self.db, order, {"invoice_download_count": (order.invoice_download_count or 0) + 1}
        )
        logger.info("invoice_downloaded", order_id=order.id, count=order.invoice_download_count)
        return render_invoice_html(order)
