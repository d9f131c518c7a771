"""Shipping and invoicing helpers derived from an order's date and destination."""
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional

from .enums import OrderStatus
from .state_machine import FORWARD_FLOW

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

# Business days to deliver, by destination region
_METRO_STATES = {"delhi", "maharashtra", "karnataka", "tamil nadu", "telangana", "west bengal"}
_REMOTE_STATES = {
    "arunachal pradesh", "assam", "manipur", "meghalaya", "mizoram", "nagaland",
    "sikkim", "tripura", "jammu and kashmir", "ladakh", "andaman and nicobar islands",
    "lakshadweep",
}

COURIERS = {
    "Blue Dart": "https://www.bluedart.com/tracking?trackid={tracking_number}",
    "Delhivery": "https://www.delhivery.com/track/package/{tracking_number}",
    "DTDC": "https://www.dtdc.in/tracking.asp?strCnno={tracking_number}",
    "India Post": "https://www.indiapost.gov.in/_layouts/15/dop.portal.tracking/trackconsignment.aspx?id={tracking_number}",
}

HIGH_VALUE_THRESHOLD = 5000

_STEP_LABELS = {
    OrderStatus.PROCESSING: "Order placed",
    OrderStatus.CONFIRMED: "Order confirmed",
    OrderStatus.MANUFACTURING: "Being crafted",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.DELIVERED: "Delivered",
}


def _suffix(length: int) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def generate_tracking_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"TRK{now:%y%m%d}{_suffix(8)}"


def generate_invoice_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"INV-{now:%Y%m}-{_suffix(6)}"


def _region(state: str) -> str:
    state = (state or "").strip().lower()
    if state in _METRO_STATES:
        return "metro"
    if state in _REMOTE_STATES:
        return "remote"
    return "standard"


def delivery_business_days(state: str) -> int:
    return {"metro": 3, "standard": 5, "remote": 8}[_region(state)]


def calculate_estimated_delivery_date(created_at: datetime, state: str) -> datetime:
    """Adds the region's business days to created_at, skipping weekends."""
    remaining = delivery_business_days(state)
    current = created_at
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


def get_courier_provider(state: str, total_amount: float) -> str:
    region = _region(state)
    if region == "remote":
        return "India Post"
    if total_amount >= HIGH_VALUE_THRESHOLD:
        return "Blue Dart"
    return "Delhivery" if region == "metro" else "DTDC"


def generate_tracking_url(tracking_number: str, courier_provider: str) -> Optional[str]:
    template = COURIERS.get(courier_provider)
    if template is None:
        return None
    return template.format(tracking_number=tracking_number)


def build_timeline(order) -> list[dict]:
    """One entry per forward status, plus a terminal step for cancelled orders."""
    status = OrderStatus(order.order_status)
    if status == OrderStatus.CANCELLED:
        timeline = [{
            "status": OrderStatus.PROCESSING.value,
            "label": _STEP_LABELS[OrderStatus.PROCESSING],
            "completed": True,
            "timestamp": order.created_at,
        }]
        timeline.append({
            "status": OrderStatus.CANCELLED.value,
            "label": "Cancelled",
            "completed": True,
            "timestamp": order.cancelled_at,
        })
        return timeline

    reached = FORWARD_FLOW.index(status)
    timeline = []
    for rank, step in enumerate(FORWARD_FLOW):
        timestamp = None
        if step == OrderStatus.PROCESSING:
            timestamp = order.created_at
        elif step == OrderStatus.DELIVERED:
            timestamp = order.actual_delivery_date
        timeline.append({
            "status": step.value,
            "label": _STEP_LABELS[step],
            "completed": rank <= reached,
            "timestamp": timestamp,
        })
    return timeline
