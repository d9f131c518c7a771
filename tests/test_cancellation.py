"""Cancellation request and admin decision workflow."""
import pytest

from services.order_service.models import Order
from services.product_service.models import Product
from shared.errors import IllegalTransitionError, ValidationError

pytestmark = pytest.mark.asyncio


class TestRequest:

    async def test_request_on_processing_order(self, lifecycle, create_order, outbox):
        order = await create_order()

        order = await lifecycle.request_cancellation(order.id, "  ")

        assert order.cancellation_requested is True
        assert order.cancellation_status == "requested"
        assert order.cancellation_reason == "User requested cancellation"
        assert order.cancellation_requested_at is not None
        assert order.order_status == "processing"
        assert (await outbox(order.id))[-1].payload == {"event": "cancellation_requested"}

    async def test_general_path_requires_processing(self, lifecycle, create_order):
        order = await create_order()
        await lifecycle.update_status(order.id, "confirmed")

        with pytest.raises(IllegalTransitionError):
            await lifecycle.request_cancellation(order.id, "Too slow")

    async def test_cod_path_allows_later_statuses(self, lifecycle, create_order):
        order = await create_order()
        await lifecycle.update_status(order.id, "shipped")

        order = await lifecycle.request_cancellation(order.id, "Found it cheaper", cod_only=True)
        assert order.cancellation_status == "requested"
        assert order.cancellation_reason == "Found it cheaper"

    async def test_cod_path_rejects_delivered(self, lifecycle, create_order):
        order = await create_order()
        await lifecycle.update_status(order.id, "delivered")

        with pytest.raises(IllegalTransitionError):
            await lifecycle.request_cancellation(order.id, None, cod_only=True)

    async def test_cod_path_rejects_online_orders(self, lifecycle, create_order, online_paid):
        order = await create_order(**online_paid)

        with pytest.raises(ValidationError):
            await lifecycle.request_cancellation(order.id, None, cod_only=True)

    async def test_duplicate_request_is_rejected(self, lifecycle, create_order):
        order = await create_order()
        await lifecycle.request_cancellation(order.id, "First")

        with pytest.raises(IllegalTransitionError):
            await lifecycle.request_cancellation(order.id, "Second")


class TestDecision:

    async def test_invalid_action(self, lifecycle, create_order):
        order = await create_order()
        await lifecycle.request_cancellation(order.id)

        with pytest.raises(ValidationError) as exc:
            await lifecycle.decide_cancellation(order.id, "maybe", None, "admin")
        assert exc.value.fields == ["action"]

    async def test_decision_needs_open_request(self, lifecycle, create_order):
        order = await create_order()

        with pytest.raises(IllegalTransitionError):
            await lifecycle.decide_cancellation(order.id, "approve", None, "admin")

    async def test_reject_requires_reason(self, lifecycle, create_order, fetch):
        order = await create_order()
        await lifecycle.request_cancellation(order.id)

        with pytest.raises(ValidationError) as exc:
            await lifecycle.decide_cancellation(order.id, "reject", "   ", "admin")
        assert exc.value.fields == ["rejection_reason"]

        stored = await fetch(Order, order.id)
        assert stored.cancellation_status == "requested"

    async def test_reject_resumes_order(self, lifecycle, create_order, outbox):
        order = await create_order()
        await lifecycle.request_cancellation(order.id)

        order = await lifecycle.decide_cancellation(order.id, "reject", "Already handed to courier", "admin")

        assert order.cancellation_status == "rejected"
        assert order.cancellation_rejection_reason == "Already handed to courier"
        assert order.cancellation_approved_by == "admin"
        assert order.order_status == "processing"
        assert (await outbox(order.id))[-1].payload == {"event": "cancellation_rejected"}

        order = await lifecycle.update_status(order.id, "confirmed")
        assert order.order_status == "confirmed"

    async def test_new_request_after_rejection(self, lifecycle, create_order):
        order = await create_order()
        await lifecycle.request_cancellation(order.id, "First")
        await lifecycle.decide_cancellation(order.id, "reject", "No", "admin")

        order = await lifecycle.request_cancellation(order.id, "Second")
        assert order.cancellation_status == "requested"
        assert order.cancellation_reason == "Second"
        assert order.cancellation_rejection_reason is None

    async def test_approve_cod_without_upfront(self, lifecycle, create_order):
        order = await create_order()
        await lifecycle.request_cancellation(order.id)

        order = await lifecycle.decide_cancellation(order.id, "APPROVE", None, "ops-lead")

        assert order.order_status == "cancelled"
        assert order.cancellation_status == "approved"
        assert order.cancelled_by == "user"
        assert order.cancelled_at is not None
        assert order.cancellation_approved_by == "ops-lead"
        assert order.refund_status == "none"
        assert order.revenue_status == "cancelled"

    async def test_approve_online_marks_refund_pending(self, lifecycle, create_order, online_paid, gateway):
        order = await create_order(**online_paid)
        await lifecycle.request_cancellation(order.id)

        order = await lifecycle.decide_cancellation(order.id, "approve", None, "admin")

        assert order.refund_status == "pending"
        assert order.refund_amount == 1000.0
        assert order.refund_method == "razorpay"
        assert order.revenue_status == "confirmed"
        assert order.revenue_amount == 1000.0
        assert order.admin_received_amount == 1000.0
        assert order.payment_status == "completed"
        # Approval never moves money by itself
        assert gateway.refunds == []

    async def test_approve_cod_with_upfront_marks_upfront_refund(self, lifecycle, create_order):
        order = await create_order(upfront_amount=200.0, payment_status="pending_upfront")
        await lifecycle.request_cancellation(order.id)

        order = await lifecycle.decide_cancellation(order.id, "approve", None, "admin")

        assert order.refund_status == "pending"
        assert order.refund_amount == 200.0
        assert order.revenue_status == "cancelled"
        assert order.revenue_amount == 0

    async def test_approve_restores_stock(self, lifecycle, create_order, product, runner, fetch, outbox):
        order = await create_order()
        await runner.run_for_order(order.id)
        assert (await fetch(Product, "p-1")).stock == 8

        await lifecycle.request_cancellation(order.id)
        await lifecycle.decide_cancellation(order.id, "approve", None, "admin")
        await runner.run_for_order(order.id)

        restored = await fetch(Product, "p-1")
        assert restored.stock == 10
        assert restored.in_stock is True
        assert all(event.status == "done" for event in await outbox(order.id))

    async def test_restock_marks_sold_out_product_available(
        self, lifecycle, create_order, product, runner, fetch
    ):
        order = await create_order(items=[{"product_id": "p-1", "name": "Clay Lamp", "price": 100.0, "quantity": 10}])
        await runner.run_for_order(order.id)
        sold_out = await fetch(Product, "p-1")
        assert (sold_out.stock, sold_out.in_stock) == (0, False)

        await lifecycle.request_cancellation(order.id)
        await lifecycle.decide_cancellation(order.id, "approve", None, "admin")
        await runner.run_for_order(order.id)

        restored = await fetch(Product, "p-1")
        assert (restored.stock, restored.in_stock) == (10, True)
