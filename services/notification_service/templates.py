"""Subjects and bodies for order lifecycle notifications."""
from dataclasses import dataclass
from enum import Enum

from shared.config.settings import STORE_NAME


class NotificationEvent(str, Enum):
    ORDER_CREATED = "order_created"
    STATUS_CHANGED = "status_changed"
    CANCELLATION_REQUESTED = "cancellation_requested"
    CANCELLATION_APPROVED = "cancellation_approved"
    CANCELLATION_REJECTED = "cancellation_rejected"
    REFUND_COMPLETED = "refund_completed"
    RETURN_REQUESTED = "return_requested"
    REVENUE_CONFIRMED = "revenue_confirmed"


@dataclass(frozen=True)
class RenderedNotification:
    event: NotificationEvent
    order_id: str
    recipient: str
    subject: str
    body: str


_STATUS_MESSAGES = {
    "processing": "We have received your order and it is being processed.",
    "confirmed": "Your order has been confirmed.",
    "manufacturing": "Your order is being crafted.",
    "shipped": "Your order is on its way.",
    "delivered": "Your order has been delivered. Thank you for shopping with us!",
    "cancelled": "Your order has been cancelled.",
}


def _money(amount) -> str:
    return f"Rs. {float(amount or 0):,.2f}"


def _items_block(order) -> str:
    lines = []
    for item in order.items or []:
        lines.append(f"  - {item.get('name')} x {item.get('quantity')} @ {_money(item.get('price'))}")
    return "\n".join(lines)


def render_notification(event: NotificationEvent, order) -> RenderedNotification:
    event = NotificationEvent(event)
    name = order.customer_name
    ref = f"#{order.id}"

    if event == NotificationEvent.ORDER_CREATED:
        subject = f"Order Confirmation {ref} - {STORE_NAME}"
        body = (
            f"Dear {name},\n\nThank you for your order {ref}.\n\n"
            f"{_items_block(order)}\n\nTotal: {_money(order.total_amount)}\n"
            f"Payment method: {order.payment_method.upper()}\n"
        )
        if (order.upfront_amount or 0) > 0:
            body += (
                f"Paid upfront: {_money(order.upfront_amount)}\n"
                f"Due on delivery: {_money(order.remaining_amount)}\n"
            )
        if order.tracking_number:
            body += f"Tracking number: {order.tracking_number} ({order.courier_provider})\n"
    elif event == NotificationEvent.STATUS_CHANGED:
        subject = f"Order {ref} is now {order.order_status} - {STORE_NAME}"
        body = f"Dear {name},\n\n{_STATUS_MESSAGES.get(order.order_status, '')}\n"
        if order.order_status == "shipped" and order.courier_tracking_url:
            body += f"Track your parcel: {order.courier_tracking_url}\n"
        if order.order_status == "delivered" and order.payment_method == "cod":
            body += f"We have received your cash payment of {_money(order.total_amount)}.\n"
    elif event == NotificationEvent.CANCELLATION_REQUESTED:
        subject = f"Cancellation Request Received {ref} - {STORE_NAME}"
        body = (
            f"Dear {name},\n\nWe received your request to cancel order {ref}.\n"
            f"Reason: {order.cancellation_reason}\n"
            "Our team will review it and get back to you shortly.\n"
        )
    elif event == NotificationEvent.CANCELLATION_APPROVED:
        subject = f"Order Cancelled {ref} - {STORE_NAME}"
        body = f"Dear {name},\n\nYour order {ref} has been cancelled.\n"
        if order.refund_status == "pending":
            body += (
                f"A refund of {_money(order.refund_amount)} will be processed to your "
                "original payment method.\n"
            )
    elif event == NotificationEvent.CANCELLATION_REJECTED:
        subject = f"Cancellation Request Update {ref} - {STORE_NAME}"
        body = (
            f"Dear {name},\n\nWe are unable to cancel order {ref}.\n"
            f"Reason: {order.cancellation_rejection_reason}\n"
            "Your order will continue to be processed.\n"
        )
    elif event == NotificationEvent.REFUND_COMPLETED:
        subject = f"Refund Processed {ref} - {STORE_NAME}"
        body = (
            f"Dear {name},\n\nYour refund of {_money(order.refund_amount)} for order {ref} "
            f"has been processed.\nRefund reference: {order.refund_transaction_id}\n"
            "It may take 5-7 business days to reflect in your account.\n"
        )
    elif event == NotificationEvent.RETURN_REQUESTED:
        subject = f"Return Request {ref} - {STORE_NAME}"
        body = (
            f"Dear {name},\n\nWe received your return request for order {ref}.\n"
            f"Reason: {order.return_reason}\n"
            "Our team will review it within 24 hours.\n"
        )
    else:
        subject = f"Payment Confirmation {ref} - {STORE_NAME}"
        body = (
            f"Dear {name},\n\nWe have confirmed receipt of your payment for order {ref}.\n"
            f"Confirmed amount: {_money(order.admin_received_amount)}\n"
        )

    body += f"\nBest regards,\n{STORE_NAME} Team\n"
    return RenderedNotification(
        event=event,
        order_id=order.id,
        recipient=order.email,
        subject=subject,
        body=body,
    )
