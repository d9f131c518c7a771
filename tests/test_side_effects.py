"""Outbox runner: stock and notification effects applied after the commit."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from services.notification_service.templates import NotificationEvent
from services.order_service.models import OutboxEvent
from services.order_service.side_effects import SideEffectRunner
from services.product_service.models import Product

pytestmark = pytest.mark.asyncio


async def test_effects_are_applied_once(create_order, product, runner, notifier, fetch, outbox):
    order = await create_order()

    assert await runner.run_for_order(order.id) == 2
    assert await runner.run_for_order(order.id) == 0

    assert (await fetch(Product, "p-1")).stock == 8
    assert [m.event for m in notifier.messages] == [NotificationEvent.ORDER_CREATED]
    assert notifier.messages[0].recipient == "asha@example.com"
    assert all(e.status == "done" and e.attempts == 1 for e in await outbox(order.id))


async def test_failing_notification_does_not_block_stock(
    create_order, product, session_factory, failing_notifier, fetch, outbox
):
    runner = SideEffectRunner(session_factory, failing_notifier)
    order = await create_order()

    assert await runner.run_for_order(order.id) == 1

    assert (await fetch(Product, "p-1")).stock == 8
    stock_event, notify_event = await outbox(order.id)
    assert stock_event.status == "done"
    assert notify_event.status == "failed"
    assert notify_event.attempts == 1
    assert notify_event.last_error == "smtp unavailable"


async def test_failed_effect_is_retried(create_order, product, session_factory, failing_notifier, outbox):
    notifier = failing_notifier
    runner = SideEffectRunner(session_factory, notifier)
    order = await create_order()
    await runner.run_for_order(order.id)

    notifier.fail = False
    assert await runner.run_pending() == 1

    _, notify_event = await outbox(order.id)
    assert notify_event.status == "done"
    assert notify_event.attempts == 2
    assert notify_event.last_error is None
    assert len(notifier.messages) == 1


async def test_attempts_are_capped(create_order, session_factory, failing_notifier, outbox):
    runner = SideEffectRunner(session_factory, failing_notifier, max_attempts=2)
    order = await create_order(items=[{"name": "Gift card", "price": 1000.0, "quantity": 1}])

    await runner.run_pending()
    await runner.run_pending()
    assert await runner.run_pending() == 0

    (notify_event,) = await outbox(order.id)
    assert notify_event.status == "failed"
    assert notify_event.attempts == 2


async def test_unknown_product_is_a_noop(create_order, runner, outbox):
    order = await create_order(
        items=[{"product_id": "ghost", "name": "Discontinued", "price": 1000.0, "quantity": 1}]
    )

    assert await runner.run_for_order(order.id) == 2
    assert all(e.status == "done" for e in await outbox(order.id))


async def test_overlapping_runs_apply_each_effect_once(
    create_order, product, session_factory, notifier, fetch, outbox
):
    first = SideEffectRunner(session_factory, notifier)
    second = SideEffectRunner(session_factory, notifier)
    order = await create_order()

    applied = await asyncio.gather(first.run_for_order(order.id), second.run_for_order(order.id))

    assert sum(applied) == 2
    assert (await fetch(Product, "p-1")).stock == 8
    assert [m.event for m in notifier.messages] == [NotificationEvent.ORDER_CREATED]
    assert all(e.status == "done" and e.attempts == 1 for e in await outbox(order.id))


async def test_worker_and_background_task_do_not_double_apply(
    create_order, product, session_factory, notifier, fetch
):
    runner = SideEffectRunner(session_factory, notifier)
    order = await create_order()

    applied = await asyncio.gather(runner.run_pending(), runner.run_for_order(order.id))

    assert sum(applied) == 2
    assert (await fetch(Product, "p-1")).stock == 8
    assert len(notifier.messages) == 1


async def test_running_row_is_skipped_until_lease_expires(
    create_order, product, session_factory, notifier, fetch, outbox
):
    runner = SideEffectRunner(session_factory, notifier, lease_seconds=60)
    order = await create_order()

    async def mark_running(claimed_at):
        async with session_factory() as db:
            await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.order_id == order.id)
                .values(status="running", claimed_at=claimed_at, attempts=1)
            )
            await db.commit()

    await mark_running(datetime.now(timezone.utc))
    assert await runner.run_for_order(order.id) == 0
    assert notifier.messages == []

    await mark_running(datetime.now(timezone.utc) - timedelta(minutes=5))
    assert await runner.run_for_order(order.id) == 2
    assert (await fetch(Product, "p-1")).stock == 8
    assert all(e.status == "done" and e.attempts == 2 for e in await outbox(order.id))
