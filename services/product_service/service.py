import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from .models import Product
from .repository import ProductRepository
from .schemas import ProductCreate

logger = structlog.get_logger(__name__)


class ProductService:

    @staticmethod
    async def create_product(db: AsyncSession, data: ProductCreate) -> Product:
        product = Product(
            id=data.id or uuid.uuid4().hex,
            name=data.name,
            price=data.price,
            stock=data.stock,
            in_stock=data.stock > 0,
        )
        return await ProductRepository.create_product(db, product)

    @staticmethod
    async def list_products(db: AsyncSession):
        return await ProductRepository.get_all_products(db)

    @staticmethod
    async def get_product_by_id(db: AsyncSession, product_id: str) -> Optional[Product]:
        return await ProductRepository.get_product_by_id(db, product_id)

    @staticmethod
    async def decrement_stock(db: AsyncSession, product_id: str, quantity: int) -> Optional[Product]:
        """Deducts ordered quantity, flooring at zero. Unknown products are skipped."""
        product = await ProductRepository.get_product_by_id(db, product_id)
        if not product:
            logger.warning("stock_decrement_skipped", product_id=product_id, reason="not_found")
            return None

        product.stock = max(0, (product.stock or 0) - (quantity or 1))
        if product.stock == 0:
            product.in_stock = False
        return await ProductRepository.update_product(db, product)

    @staticmethod
    async def restore_stock(db: AsyncSession, product_id: str, quantity: int) -> Optional[Product]:
        """Puts quantity back after a cancellation and marks the product available."""
        product = await ProductRepository.get_product_by_id(db, product_id)
        if not product:
            logger.warning("stock_restore_skipped", product_id=product_id, reason="not_found")
            return None

        product.stock = (product.stock or 0) + (quantity or 1)
        product.in_stock = product.stock > 0
        return await ProductRepository.update_product(db, product)
