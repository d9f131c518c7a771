"""
Order lifecycle rules.

Pure functions over an order-like object (the ORM row or any object with the
same attribute names). Nothing here touches the database; the service layer
loads the order, asks these functions what the next state is and persists it.

Status flow::

    processing -> confirmed -> manufacturing -> shipped -> delivered
         \\____________\\______________\\____________\\-> cancelled

Forward jumps are allowed (an admin may mark a processing order delivered),
regressions are not, and delivered/cancelled are terminal.
"""
from dataclasses import dataclass

from shared.errors import IllegalTransitionError
from .enums import (
    CancellationStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RevenueStatus,
)

FORWARD_FLOW = (
    OrderStatus.PROCESSING,
    OrderStatus.CONFIRMED,
    OrderStatus.MANUFACTURING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})
PRE_DELIVERY_STATUSES = frozenset(FORWARD_FLOW[:-1])

_RANK = {status: rank for rank, status in enumerate(FORWARD_FLOW)}


@dataclass(frozen=True)
class RevenueState:
    status: RevenueStatus
    amount: float
    admin_received: float


def is_terminal(status: str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    current, target = OrderStatus(current), OrderStatus(target)
    if current in TERMINAL_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return True
    return _RANK[target] > _RANK[current]


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise IllegalTransitionError(
            f"Cannot move order from '{OrderStatus(current).value}' to '{OrderStatus(target).value}'"
        )


def ensure_not_frozen(order, action: str = "update") -> None:
    """Orders with an approved cancellation accept no further changes."""
    if order.cancellation_status == CancellationStatus.APPROVED:
        raise IllegalTransitionError(
            f"Cannot {action} a cancelled order. Order has been cancelled and cannot be modified."
        )


def net_revenue(order) -> float:
    return max(0.0, (order.total_amount or 0) - (order.commission or 0))


def next_payment_status(order, new_status: str) -> str:
    """
    Payment status implied by an order status change.

    Cash on delivery is collected by the courier, so delivery completes the
    payment; a cancelled COD order will never be paid.
    """
    new_status = OrderStatus(new_status)
    if order.payment_method == PaymentMethod.COD:
        if new_status == OrderStatus.DELIVERED:
            return PaymentStatus.COMPLETED.value
        if new_status == OrderStatus.CANCELLED:
            return PaymentStatus.FAILED.value
    return order.payment_status


def revenue_at_creation(
    payment_method: str,
    payment_status: str,
    total_amount: float,
    upfront_amount: float,
    commission: float = 0,
) -> RevenueState:
    if payment_method != PaymentMethod.COD and payment_status == PaymentStatus.COMPLETED:
        amount = max(0.0, total_amount - (commission or 0))
        return RevenueState(RevenueStatus.CONFIRMED, amount, amount)
    if (
        payment_method == PaymentMethod.COD
        and payment_status == PaymentStatus.COMPLETED
        and upfront_amount > 0
    ):
        # The upfront share is part of the total, not an extra charge
        return RevenueState(RevenueStatus.PENDING, upfront_amount, upfront_amount)
    return RevenueState(RevenueStatus.PENDING, 0.0, 0.0)


def revenue_on_payment(order) -> RevenueState:
    """Revenue once the gateway confirms a captured payment."""
    if order.payment_method != PaymentMethod.COD:
        amount = net_revenue(order)
        return RevenueState(RevenueStatus.CONFIRMED, amount, amount)
    upfront = order.upfront_amount or 0
    return RevenueState(RevenueStatus(order.revenue_status), upfront, upfront)


def revenue_on_status_change(order, new_status: str) -> RevenueState:
    new_status = OrderStatus(new_status)
    current = RevenueState(
        RevenueStatus(order.revenue_status),
        order.revenue_amount or 0.0,
        order.admin_received_amount or 0.0,
    )
    upfront = order.upfront_amount or 0
    is_cod = order.payment_method == PaymentMethod.COD

    if new_status == OrderStatus.CANCELLED:
        if is_cod:
            return RevenueState(RevenueStatus.CANCELLED, 0.0, 0.0)
        # Held until the refund actually goes through
        return RevenueState(RevenueStatus.PENDING, current.amount, current.admin_received)

    if new_status == OrderStatus.DELIVERED:
        if is_cod:
            return RevenueState(RevenueStatus.EARNED, net_revenue(order), upfront)
        if current.status == RevenueStatus.CONFIRMED:
            return current
        return RevenueState(RevenueStatus.EARNED, net_revenue(order), current.admin_received)

    # processing .. shipped
    if is_cod:
        if upfront > 0:
            return RevenueState(RevenueStatus.PENDING, upfront, upfront)
        return RevenueState(RevenueStatus.PENDING, 0.0, 0.0)
    if current.status == RevenueStatus.CONFIRMED:
        return current
    if order.payment_status == PaymentStatus.COMPLETED:
        amount = net_revenue(order)
        return RevenueState(RevenueStatus.CONFIRMED, amount, amount)
    return current


def requires_refund(order) -> bool:
    if order.payment_method != PaymentMethod.COD:
        return order.payment_status == PaymentStatus.COMPLETED
    return (order.upfront_amount or 0) > 0 and order.payment_status in (
        PaymentStatus.PENDING_UPFRONT,
        PaymentStatus.COMPLETED,
    )


def charged_amount(order) -> float:
    """Upper bound for any refund: what the customer actually paid online."""
    if order.payment_method == PaymentMethod.COD:
        return order.upfront_amount or 0.0
    return order.total_amount or 0.0


def refund_amount_for(order) -> float:
    if order.payment_method == PaymentMethod.COD:
        return order.upfront_amount or 0.0
    amount = order.refund_amount or order.total_amount or 0.0
    return min(amount, charged_amount(order))
