"""
Status vocabularies for orders.

Stored as plain strings; the str mixin lets a raw column value compare equal
to its member (``"cod" == PaymentMethod.COD``).
"""
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    MANUFACTURING = "manufacturing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    COD = "cod"
    ONLINE = "online"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING_UPFRONT = "pending_upfront"


class RevenueStatus(str, Enum):
    PENDING = "pending"
    EARNED = "earned"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class CancellationStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefundStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReturnStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_TRANSIT = "in_transit"
    RECEIVED = "received"
    PROCESSED = "processed"


class CancelledBy(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


# Checkout clients send the gateway's brand name for online payments
_ONLINE_ALIASES = {"online", "razorpay", "card", "upi", "netbanking"}

# Ad-hoc values the storefront sends while a payment is in flight
_PENDING_ALIASES = {"partial", "processing"}


def normalize_payment_method(raw: Optional[str]) -> Optional[PaymentMethod]:
    if raw is None:
        return None
    value = str(raw).strip().lower()
    if value == PaymentMethod.COD.value:
        return PaymentMethod.COD
    if value in _ONLINE_ALIASES:
        return PaymentMethod.ONLINE
    return None


def normalize_payment_status(
    raw: Optional[str],
    payment_method: PaymentMethod,
    upfront_amount: float = 0,
) -> PaymentStatus:
    """
    Maps a checkout-supplied payment status onto PaymentStatus.

    ``pending_upfront`` only survives for COD orders that actually collect an
    upfront amount; anything unknown collapses to ``pending``.
    """
    value = (raw or "").strip().lower()
    if value in _PENDING_ALIASES:
        return PaymentStatus.PENDING
    if value == PaymentStatus.PENDING_UPFRONT.value:
        if payment_method == PaymentMethod.COD and upfront_amount > 0:
            return PaymentStatus.PENDING_UPFRONT
        return PaymentStatus.PENDING
    if value in (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value):
        return PaymentStatus(value)
    return PaymentStatus.PENDING
