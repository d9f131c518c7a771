from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class PaymentIntentCreate(BaseModel):
    amount: float = Field(gt=0)
    currency: str = "INR"
    customer_name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)
    payment_method: str = "online"
    upfront_amount: Optional[float] = None
    remaining_amount: Optional[float] = None
    seller_token: Optional[str] = None
    coupon_code: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    success: bool = True
    gateway_order_id: str
    merchant_order_id: str
    amount: int  # paise
    currency: str
    status: str
    key_id: str


class PaymentCallback(BaseModel):
    gateway_order_id: str
    gateway_payment_id: str
    gateway_signature: str


class PaymentRecorded(BaseModel):
    success: bool = True
    message: str
    gateway_order_id: str
    gateway_payment_id: str
    order_id: Optional[str] = None
