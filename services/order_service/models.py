import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from shared.config.database import Base

from .enums import (
    CancellationStatus,
    OrderStatus,
    RefundStatus,
    ReturnStatus,
    RevenueStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return uuid.uuid4().hex


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=new_order_id)

    # Customer
    customer_name = Column(String, nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(32), nullable=False)
    address = Column(JSON, nullable=False)  # street, city, state, pincode, country

    # Line items: [{product_id, name, price, quantity, image}]
    items = Column(JSON, nullable=False, default=list)
    total_amount = Column(Float, nullable=False)  # pre-computed by checkout

    # Payment
    payment_method = Column(String(16), nullable=False)
    payment_status = Column(String(24), nullable=False)
    upfront_amount = Column(Float, nullable=False, default=0)
    remaining_amount = Column(Float, nullable=False, default=0)
    seller_token = Column(String, nullable=True)
    commission = Column(Float, nullable=False, default=0)
    coupon_code = Column(String, nullable=True)
    gateway_order_id = Column(String(64), nullable=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True)
    gateway_signature = Column(String(256), nullable=True)
    transaction_id = Column(String(64), nullable=True)
    payment_completed_at = Column(DateTime(timezone=True), nullable=True)

    order_status = Column(String(24), nullable=False, default=OrderStatus.PROCESSING.value, index=True)

    # Revenue bookkeeping
    revenue_status = Column(String(24), nullable=False, default=RevenueStatus.PENDING.value)
    revenue_amount = Column(Float, nullable=False, default=0)
    admin_received_amount = Column(Float, nullable=False, default=0)
    revenue_earned_at = Column(DateTime(timezone=True), nullable=True)
    revenue_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cod_confirmed_by = Column(String, nullable=True)
    cod_confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancellation_requested = Column(Boolean, nullable=False, default=False)
    cancellation_reason = Column(Text, nullable=True)
    cancellation_status = Column(String(16), nullable=False, default=CancellationStatus.NONE.value)
    cancellation_requested_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_approved_by = Column(String, nullable=True)
    cancellation_approved_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_rejection_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(16), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Refund
    refund_status = Column(String(16), nullable=False, default=RefundStatus.NONE.value)
    refund_amount = Column(Float, nullable=False, default=0)
    refund_transaction_id = Column(String(64), nullable=True)  # gateway refund id
    merchant_refund_id = Column(String(64), nullable=True)
    refund_initiated_at = Column(DateTime(timezone=True), nullable=True)
    refund_completed_at = Column(DateTime(timezone=True), nullable=True)
    refund_failed_reason = Column(Text, nullable=True)
    refund_method = Column(String(32), nullable=True)

    # Tracking and delivery
    tracking_number = Column(String(32), unique=True, nullable=True)
    courier_provider = Column(String(64), nullable=True)
    courier_tracking_url = Column(String, nullable=True)
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_date = Column(DateTime(timezone=True), nullable=True)
    delivery_notes = Column(Text, nullable=True)

    # Returns
    return_requested = Column(Boolean, nullable=False, default=False)
    return_reason = Column(Text, nullable=True)
    return_requested_at = Column(DateTime(timezone=True), nullable=True)
    return_status = Column(String(16), nullable=False, default=ReturnStatus.NONE.value)
    return_approved_by = Column(String, nullable=True)
    return_approved_at = Column(DateTime(timezone=True), nullable=True)
    return_rejection_reason = Column(Text, nullable=True)

    # Invoice
    invoice_number = Column(String(32), unique=True, nullable=True)
    invoice_generated_at = Column(DateTime(timezone=True), nullable=True)
    invoice_download_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class OutboxEvent(Base):
    """A side effect recorded in the same commit as the order change it belongs to."""

    __tablename__ = "order_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    kind = Column(String(32), nullable=False)  # decrement_stock, restore_stock, notify
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default="pending", index=True)  # pending, running, done, failed
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)
