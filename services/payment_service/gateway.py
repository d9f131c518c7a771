"""
Razorpay adapter.

Talks to the REST API directly with httpx so every call carries an explicit
timeout and shows up in HTTPX tracing. Amounts cross this boundary in paise.
"""
import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx
import structlog

from shared.config.settings import (
    GATEWAY_TIMEOUT_SECONDS,
    RAZORPAY_BASE_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
)
from shared.errors import GatewayError, ValidationError
from shared.observability import ecomm_gateway_request_duration_seconds

logger = structlog.get_logger(__name__)


@dataclass
class PaymentIntent:
    id: str
    status: str
    amount: int
    currency: str
    receipt: Optional[str] = None


@dataclass
class RefundResult:
    refund_id: str
    status: str
    amount: int
    raw: dict = field(default_factory=dict)


class PaymentGateway(Protocol):
    name: str

    async def create_payment_intent(
        self, amount_minor: int, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> PaymentIntent: ...

    def verify_callback(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    async def fetch_payments_for_order(self, order_id: str) -> list[dict]: ...

    async def refund(self, payment_id: str, amount_minor: int, reason: str) -> RefundResult: ...


def to_minor_units(amount) -> int:
    """Rupees to paise. The gateway rejects zero and negative amounts, so do we."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Invalid payment amount. Amount must be a valid number.", ["amount"])
    minor = int(round(value * 100))
    if minor <= 0:
        raise ValidationError("Invalid payment amount. Amount must be greater than 0.", ["amount"])
    return minor


def _error_message(resp: httpx.Response) -> str:
    try:
        error = resp.json().get("error") or {}
    except ValueError:
        error = {}
    if error.get("description"):
        return error["description"]
    if error.get("field"):
        return f"Invalid {error['field']}"
    if resp.status_code == 404:
        return "Payment not found"
    if resp.status_code == 400:
        return "Invalid request"
    return f"Gateway responded with HTTP {resp.status_code}"


class RazorpayGateway:
    name = "razorpay"

    def __init__(
        self,
        key_id: str = RAZORPAY_KEY_ID,
        key_secret: str = RAZORPAY_KEY_SECRET,
        base_url: str = RAZORPAY_BASE_URL,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _ensure_configured(self):
        if not self.key_id or not self.key_secret:
            logger.error("gateway_not_configured", gateway=self.name)
            raise GatewayError("Payment gateway not configured. Please contact support.")

    async def _request(self, operation: str, method: str, path: str, json: Optional[dict] = None) -> dict:
        self._ensure_configured()
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                resp = await client.request(method, path, json=json)
        except httpx.TimeoutException:
            logger.warning("gateway_timeout", operation=operation, path=path)
            raise GatewayError("gateway timeout")
        except httpx.HTTPError as e:
            logger.error("gateway_unreachable", operation=operation, path=path, error=str(e))
            raise GatewayError(f"Payment gateway unreachable: {e}")
        finally:
            ecomm_gateway_request_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - started
            )

        if resp.is_error:
            message = _error_message(resp)
            logger.error("gateway_error", operation=operation, status_code=resp.status_code, message=message)
            raise GatewayError(message)
        return resp.json()

    async def create_payment_intent(
        self, amount_minor: int, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> PaymentIntent:
        if amount_minor <= 0:
            raise ValidationError("Invalid payment amount. Amount must be greater than 0.", ["amount"])
        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": notes or {},
        }
        data = await self._request("create_order", "POST", "/orders", json=payload)
        logger.info("gateway_order_created", gateway_order_id=data["id"], receipt=receipt)
        return PaymentIntent(
            id=data["id"],
            status=data.get("status", "created"),
            amount=data.get("amount", amount_minor),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
        )

    def verify_callback(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (order_id and payment_id and signature) or not self.key_secret:
            return False
        expected = hmac.new(
            self.key_secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip())

    async def fetch_payments_for_order(self, order_id: str) -> list[dict]:
        data = await self._request("fetch_payments", "GET", f"/orders/{order_id}/payments")
        return data.get("items", [])

    async def refund(self, payment_id: str, amount_minor: int, reason: str) -> RefundResult:
        if not payment_id:
            raise ValidationError("Payment ID is required", ["payment_id"])
        if amount_minor <= 0:
            raise ValidationError("Refund amount must be greater than 0", ["amount"])
        payload = {
            "amount": amount_minor,
            "notes": {"reason": reason, "refund_initiated_by": "merchant"},
        }
        data = await self._request("refund", "POST", f"/payments/{payment_id}/refund", json=payload)
        logger.info("gateway_refund_created", payment_id=payment_id, refund_id=data.get("id"))
        return RefundResult(
            refund_id=data["id"],
            status=data.get("status", "processed"),
            amount=data.get("amount", amount_minor),
            raw=data,
        )


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; tests override it with a fake."""
    return RazorpayGateway()
