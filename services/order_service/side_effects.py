"""
Order side effects: stock adjustment and customer notifications.

Lifecycle operations never perform these inline. They write OutboxEvent rows
in the same commit as the order change; SideEffectRunner applies them after
the response has gone out. A failing effect is logged, counted and left for
a later run_pending() pass; it never fails the order mutation and never
blocks the other effects.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Sequence

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.notification_service.dispatcher import NotificationDispatcher
from services.notification_service.templates import NotificationEvent, render_notification
from services.product_service.service import ProductService
from shared.config.settings import OUTBOX_BATCH_SIZE, OUTBOX_LEASE_SECONDS, OUTBOX_MAX_ATTEMPTS
from shared.observability import ecomm_side_effects_total
from .models import OutboxEvent
from .repository import OrderRepository

logger = structlog.get_logger(__name__)


class SideEffectKind(str, Enum):
    DECREMENT_STOCK = "decrement_stock"
    RESTORE_STOCK = "restore_stock"
    NOTIFY = "notify"


PENDING = "pending"
RUNNING = "running"
DONE = "done"
FAILED = "failed"


def stock_events(order_id: str, items: Iterable[dict], kind: SideEffectKind) -> list[OutboxEvent]:
    """One event per line item that references a catalogue product."""
    events = []
    for item in items or []:
        product_id = item.get("product_id")
        if not product_id:
            continue
        events.append(OutboxEvent(
            order_id=order_id,
            kind=kind.value,
            payload={"product_id": product_id, "quantity": int(item.get("quantity") or 1)},
            status=PENDING,
            attempts=0,
        ))
    return events


def notify_event(order_id: str, event: NotificationEvent) -> OutboxEvent:
    return OutboxEvent(
        order_id=order_id,
        kind=SideEffectKind.NOTIFY.value,
        payload={"event": NotificationEvent(event).value},
        status=PENDING,
        attempts=0,
    )


class SideEffectRunner:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        notifier: NotificationDispatcher,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS,
        lease_seconds: float = OUTBOX_LEASE_SECONDS,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.lease_seconds = lease_seconds

    def _claimable(self):
        stale = datetime.now(timezone.utc) - timedelta(seconds=self.lease_seconds)
        return (
            OutboxEvent.attempts < self.max_attempts,
            or_(
                OutboxEvent.status.in_([PENDING, FAILED]),
                and_(OutboxEvent.status == RUNNING, OutboxEvent.claimed_at < stale),
            ),
        )

    def _runnable(self):
        return select(OutboxEvent).where(*self._claimable())

    async def _claim(self, db: AsyncSession, event_id: int) -> bool:
        """
        Marks one row as running unless another runner already holds it.

        Same conditional-update guard as OrderRepository.claim_refund; a row
        left running by a crashed worker becomes claimable again after the lease.
        """
        result = await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, *self._claimable())
            .values(status=RUNNING, claimed_at=datetime.now(timezone.utc), attempts=OutboxEvent.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def run_for_order(self, order_id: str) -> int:
        """Applies the outstanding effects of one order. Used as a background task."""
        async with self.session_factory() as db:
            result = await db.execute(
                self._runnable().where(OutboxEvent.order_id == order_id).order_by(OutboxEvent.id)
            )
            return await self._run(db, result.scalars().all())

    async def run_pending(self, limit: int = OUTBOX_BATCH_SIZE) -> int:
        """Retries anything still pending or failed, oldest first."""
        async with self.session_factory() as db:
            result = await db.execute(self._runnable().order_by(OutboxEvent.id).limit(limit))
            return await self._run(db, result.scalars().all())

    async def run_forever(self, interval: float):
        logger.info("outbox_worker_started", interval=interval)
        while True:
            try:
                await self.run_pending()
            except Exception as e:
                logger.error("outbox_worker_pass_failed", error=str(e))
            await asyncio.sleep(interval)

    async def _run(self, db: AsyncSession, events: Sequence[OutboxEvent]) -> int:
        applied = 0
        for event_id in [event.id for event in events]:
            if not await self._claim(db, event_id):
                logger.info("side_effect_already_claimed", event_id=event_id)
                continue
            event = await db.get(OutboxEvent, event_id, populate_existing=True)
            kind, order_id, payload = event.kind, event.order_id, dict(event.payload or {})
            try:
                await self._apply(db, kind, order_id, payload)
            except Exception as e:
                # A failing effect MUST NOT block the others
                await db.rollback()
                event = await db.get(OutboxEvent, event_id, populate_existing=True)
                event.status = FAILED
                event.last_error = str(e) or type(e).__name__
                ecomm_side_effects_total.labels(kind=kind, outcome="failed").inc()
                logger.error(
                    "side_effect_failed",
                    order_id=order_id,
                    kind=kind,
                    attempts=event.attempts,
                    error=event.last_error,
                )
            else:
                event.status = DONE
                event.last_error = None
                event.processed_at = datetime.now(timezone.utc)
                applied += 1
                ecomm_side_effects_total.labels(kind=kind, outcome="done").inc()
                logger.info("side_effect_applied", order_id=order_id, kind=kind)
            await db.commit()
        return applied

    async def _apply(self, db: AsyncSession, kind: str, order_id: str, payload: dict):
        kind = SideEffectKind(kind)

        if kind == SideEffectKind.DECREMENT_STOCK:
            await ProductService.decrement_stock(db, payload["product_id"], payload["quantity"])
        elif kind == SideEffectKind.RESTORE_STOCK:
            await ProductService.restore_stock(db, payload["product_id"], payload["quantity"])
        else:
            order = await OrderRepository.get_order(db, order_id)
            if order is None:
                raise LookupError(f"Order {order_id} not found")
            message = render_notification(NotificationEvent(payload["event"]), order)
            await self.notifier.send(message)
