"""Pure transition, revenue and refund rules."""
from types import SimpleNamespace

import pytest

from services.order_service.enums import (
    PaymentMethod,
    PaymentStatus,
    RevenueStatus,
    normalize_payment_method,
    normalize_payment_status,
)
from services.order_service.state_machine import (
    can_transition,
    charged_amount,
    ensure_not_frozen,
    ensure_transition,
    next_payment_status,
    refund_amount_for,
    requires_refund,
    revenue_at_creation,
    revenue_on_payment,
    revenue_on_status_change,
)
from shared.errors import IllegalTransitionError


def make_order(**overrides):
    fields = {
        "payment_method": "cod",
        "payment_status": "pending",
        "order_status": "processing",
        "total_amount": 1000.0,
        "commission": 0.0,
        "upfront_amount": 0.0,
        "revenue_status": "pending",
        "revenue_amount": 0.0,
        "admin_received_amount": 0.0,
        "refund_amount": 0.0,
        "cancellation_status": "none",
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


# ============================================================================
# Status transitions
# ============================================================================

class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        ("processing", "confirmed"),
        ("confirmed", "manufacturing"),
        ("manufacturing", "shipped"),
        ("shipped", "delivered"),
        ("processing", "delivered"),
        ("processing", "cancelled"),
        ("shipped", "cancelled"),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        ("confirmed", "processing"),
        ("shipped", "confirmed"),
        ("delivered", "shipped"),
        ("delivered", "cancelled"),
        ("cancelled", "processing"),
        ("cancelled", "delivered"),
        ("processing", "processing"),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_ensure_transition_raises_conflict(self):
        with pytest.raises(IllegalTransitionError) as exc:
            ensure_transition("delivered", "shipped")
        assert exc.value.status_code == 409

    def test_frozen_after_approved_cancellation(self):
        with pytest.raises(IllegalTransitionError):
            ensure_not_frozen(make_order(cancellation_status="approved"))
        ensure_not_frozen(make_order(cancellation_status="rejected"))


# ============================================================================
# Payment coupling
# ============================================================================

class TestNextPaymentStatus:

    def test_cod_delivery_completes_payment(self):
        assert next_payment_status(make_order(), "delivered") == "completed"

    def test_cod_cancellation_fails_payment(self):
        assert next_payment_status(make_order(), "cancelled") == "failed"

    def test_online_is_untouched(self):
        order = make_order(payment_method="online", payment_status="completed")
        assert next_payment_status(order, "delivered") == "completed"
        assert next_payment_status(order, "cancelled") == "completed"

    def test_cod_intermediate_status_keeps_payment(self):
        assert next_payment_status(make_order(payment_status="pending_upfront"), "shipped") == "pending_upfront"


# ============================================================================
# Revenue
# ============================================================================

class TestRevenue:

    def test_online_paid_at_creation_is_confirmed(self):
        state = revenue_at_creation("online", "completed", 1000.0, 0, commission=150.0)
        assert state.status == RevenueStatus.CONFIRMED
        assert state.amount == 850.0
        assert state.admin_received == 850.0

    def test_online_unpaid_at_creation_is_pending(self):
        state = revenue_at_creation("online", "pending", 1000.0, 0)
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.PENDING, 0.0, 0.0)

    def test_cod_with_paid_upfront_holds_upfront(self):
        state = revenue_at_creation("cod", "completed", 1000.0, 200.0)
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.PENDING, 200.0, 200.0)

    def test_cod_without_upfront_before_delivery(self):
        state = revenue_on_status_change(make_order(), "shipped")
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.PENDING, 0.0, 0.0)

    def test_cod_with_upfront_before_delivery(self):
        state = revenue_on_status_change(make_order(upfront_amount=200.0), "confirmed")
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.PENDING, 200.0, 200.0)

    def test_cod_delivery_earns_net_revenue(self):
        order = make_order(upfront_amount=200.0, commission=100.0)
        state = revenue_on_status_change(order, "delivered")
        assert state.status == RevenueStatus.EARNED
        assert state.amount == 900.0
        assert state.admin_received == 200.0

    def test_online_delivery_keeps_confirmed_revenue(self):
        order = make_order(
            payment_method="online",
            payment_status="completed",
            revenue_status="confirmed",
            revenue_amount=1000.0,
            admin_received_amount=1000.0,
        )
        state = revenue_on_status_change(order, "delivered")
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.CONFIRMED, 1000.0, 1000.0)

    def test_cod_cancellation_zeroes_revenue(self):
        order = make_order(upfront_amount=200.0, revenue_amount=200.0, admin_received_amount=200.0)
        state = revenue_on_status_change(order, "cancelled")
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.CANCELLED, 0.0, 0.0)

    def test_online_cancellation_holds_revenue(self):
        order = make_order(
            payment_method="online",
            payment_status="completed",
            revenue_status="confirmed",
            revenue_amount=1000.0,
            admin_received_amount=1000.0,
        )
        state = revenue_on_status_change(order, "cancelled")
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.PENDING, 1000.0, 1000.0)

    def test_payment_confirms_online_revenue(self):
        state = revenue_on_payment(make_order(payment_method="online", commission=50.0))
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.CONFIRMED, 950.0, 950.0)

    def test_payment_records_cod_upfront(self):
        state = revenue_on_payment(make_order(upfront_amount=300.0))
        assert (state.status, state.amount, state.admin_received) == (RevenueStatus.PENDING, 300.0, 300.0)


# ============================================================================
# Refund eligibility and bounds
# ============================================================================

class TestRefundRules:

    @pytest.mark.parametrize("method,status,upfront,expected", [
        ("online", "completed", 0, True),
        ("online", "pending", 0, False),
        ("cod", "pending", 0, False),
        ("cod", "completed", 0, False),
        ("cod", "pending_upfront", 200, True),
        ("cod", "completed", 200, True),
        ("cod", "failed", 200, False),
    ])
    def test_requires_refund(self, method, status, upfront, expected):
        order = make_order(payment_method=method, payment_status=status, upfront_amount=upfront)
        assert requires_refund(order) is expected

    def test_cod_refund_is_upfront(self):
        order = make_order(upfront_amount=250.0, refund_amount=1000.0)
        assert refund_amount_for(order) == 250.0
        assert charged_amount(order) == 250.0

    def test_online_refund_defaults_to_total(self):
        assert refund_amount_for(make_order(payment_method="online")) == 1000.0

    def test_online_refund_never_exceeds_charge(self):
        order = make_order(payment_method="online", refund_amount=5000.0)
        assert refund_amount_for(order) == 1000.0

    def test_partial_online_refund_amount_is_kept(self):
        order = make_order(payment_method="online", refund_amount=400.0)
        assert refund_amount_for(order) == 400.0


# ============================================================================
# Normalization at the boundary
# ============================================================================

class TestNormalization:

    @pytest.mark.parametrize("raw,expected", [
        ("cod", PaymentMethod.COD),
        ("COD", PaymentMethod.COD),
        ("razorpay", PaymentMethod.ONLINE),
        ("online", PaymentMethod.ONLINE),
        ("UPI", PaymentMethod.ONLINE),
        ("cheque", None),
        (None, None),
    ])
    def test_payment_method(self, raw, expected):
        assert normalize_payment_method(raw) == expected

    @pytest.mark.parametrize("raw,method,upfront,expected", [
        ("partial", PaymentMethod.COD, 0, PaymentStatus.PENDING),
        ("processing", PaymentMethod.ONLINE, 0, PaymentStatus.PENDING),
        ("completed", PaymentMethod.ONLINE, 0, PaymentStatus.COMPLETED),
        ("failed", PaymentMethod.ONLINE, 0, PaymentStatus.FAILED),
        ("pending_upfront", PaymentMethod.COD, 200, PaymentStatus.PENDING_UPFRONT),
        ("pending_upfront", PaymentMethod.COD, 0, PaymentStatus.PENDING),
        ("pending_upfront", PaymentMethod.ONLINE, 200, PaymentStatus.PENDING),
        ("whatever", PaymentMethod.COD, 0, PaymentStatus.PENDING),
        (None, PaymentMethod.COD, 0, PaymentStatus.PENDING),
    ])
    def test_payment_status(self, raw, method, upfront, expected):
        assert normalize_payment_status(raw, method, upfront) == expected
