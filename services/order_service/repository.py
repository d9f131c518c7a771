from typing import Iterable, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .enums import RefundStatus
from .models import Order, OutboxEvent


class OrderRepository:
    @staticmethod
    async def create_order(db: AsyncSession, order: Order, events: Iterable[OutboxEvent] = ()) -> Order:
        db.add(order)
        db.add_all(list(events))
        await db.commit()
        await db.refresh(order)
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
        result = await db.execute(select(Order).where(Order.id == order_id))
        return result.scalars().first()

    @staticmethod
    async def find_by_gateway_order_id(db: AsyncSession, gateway_order_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order).where(
                or_(Order.gateway_order_id == gateway_order_id, Order.transaction_id == gateway_order_id)
            )
        )
        return result.scalars().first()

    @staticmethod
    async def list_by_email(db: AsyncSession, email: str) -> Sequence[Order]:
        result = await db.execute(
            select(Order)
            .where(func.lower(Order.email) == email.strip().lower())
            .order_by(Order.created_at.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def list_orders(
        db: AsyncSession, status: Optional[str] = None, limit: int = 50, skip: int = 0
    ) -> Sequence[Order]:
        stmt = select(Order)
        if status:
            stmt = stmt.where(Order.order_status == status)
        result = await db.execute(stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit))
        return result.scalars().all()

    @staticmethod
    async def save(db: AsyncSession, order: Order, changes: dict, events: Iterable[OutboxEvent] = ()) -> Order:
        """Applies changes and queued side effects to the order in one commit."""
        for field, value in changes.items():
            setattr(order, field, value)
        db.add_all(list(events))
        await db.commit()
        await db.refresh(order)
        return order

    @staticmethod
    async def claim_refund(db: AsyncSession, order: Order, changes: dict) -> bool:
        """
        Moves the refund into 'processing' unless another request already holds it.

        The guard lives in the WHERE clause, so two concurrent callers cannot
        both win.
        """
        result = await db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.refund_status.notin_([RefundStatus.PROCESSING.value, RefundStatus.COMPLETED.value]),
            )
            .values(refund_status=RefundStatus.PROCESSING.value, **changes)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(order)
        return result.rowcount == 1
