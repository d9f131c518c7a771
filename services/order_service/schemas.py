from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, EmailStr, Field


class AddressIn(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None


class OrderItemIn(BaseModel):
    product_id: Optional[str] = None
    name: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    image: Optional[str] = None


class OrderCreate(BaseModel):
    """
    Checkout payload.

    Fields are optional at the schema level so that missing ones are reported
    together by the lifecycle validation, the way the storefront expects.
    The address may be a structured object or a street line with the other
    parts sent flat.
    """
    customer_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[Union[AddressIn, str]] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None
    items: Optional[List[OrderItemIn]] = None
    total_amount: Optional[float] = None
    payment_method: Optional[str] = None
    payment_status: Optional[str] = None
    upfront_amount: float = 0
    remaining_amount: float = 0
    commission: float = Field(default=0, ge=0)
    seller_token: Optional[str] = None
    coupon_code: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    transaction_id: Optional[str] = None


class StatusUpdate(BaseModel):
    order_status: str


class CancellationRequest(BaseModel):
    reason: Optional[str] = None


class CancellationDecision(BaseModel):
    action: str
    rejection_reason: Optional[str] = None


class RevenueConfirmation(BaseModel):
    admin_received_amount: Optional[float] = Field(default=None, ge=0)


class ReturnRequest(BaseModel):
    reason: Optional[str] = None


class ReturnDecision(BaseModel):
    action: str
    rejection_reason: Optional[str] = None


class AddressOut(BaseModel):
    street: str
    city: str
    state: str
    pincode: str
    country: str


class OrderItemOut(BaseModel):
    product_id: Optional[str] = None
    name: str
    price: float
    quantity: int
    image: Optional[str] = None


class OrderResponse(BaseModel):
    id: str
    customer_name: str
    email: str
    phone: str
    address: AddressOut
    items: List[OrderItemOut]
    total_amount: float
    payment_method: str
    payment_status: str
    order_status: str
    upfront_amount: float
    remaining_amount: float
    commission: float
    coupon_code: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    revenue_status: str
    revenue_amount: float
    admin_received_amount: float
    cancellation_requested: bool
    cancellation_status: str
    cancellation_reason: Optional[str] = None
    cancellation_rejection_reason: Optional[str] = None
    cancellation_approved_by: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refund_status: str
    refund_amount: float
    refund_transaction_id: Optional[str] = None
    merchant_refund_id: Optional[str] = None
    refund_failed_reason: Optional[str] = None
    refund_method: Optional[str] = None
    tracking_number: Optional[str] = None
    courier_provider: Optional[str] = None
    courier_tracking_url: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    return_status: str
    return_reason: Optional[str] = None
    invoice_number: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderEnvelope(BaseModel):
    success: bool = True
    message: Optional[str] = None
    order: OrderResponse


class OrderListEnvelope(BaseModel):
    success: bool = True
    orders: List[OrderResponse]


class RefundEnvelope(OrderEnvelope):
    refund_amount: float
    refund_id: Optional[str] = None


class TimelineStep(BaseModel):
    status: str
    label: str
    completed: bool
    timestamp: Optional[datetime] = None


class TrackingResponse(BaseModel):
    id: str
    order_status: str
    tracking_number: Optional[str] = None
    courier_provider: Optional[str] = None
    courier_tracking_url: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    timeline: List[TimelineStep]
