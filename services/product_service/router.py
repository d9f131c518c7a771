from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.errors import NotFoundError
from shared.security.dependencies import verify_internal_api_key
from .schemas import ProductCreate, ProductResponse, StockUpdate
from .service import ProductService

# Stock is owned by the order lifecycle; only internal callers may touch it
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "product", "status": "running"}


@router.post("/", response_model=ProductResponse)
async def create_product(
    product: ProductCreate,
    db: AsyncSession = Depends(get_db)
):
    return await ProductService.create_product(db, product)


@router.get("/", response_model=list[ProductResponse])
async def list_products(db: AsyncSession = Depends(get_db)):
    return await ProductService.list_products(db)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str,
    db: AsyncSession = Depends(get_db)
):
    product = await ProductService.get_product_by_id(db, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


@router.post("/{product_id}/reduce_stock", response_model=ProductResponse)
async def reduce_stock(
    product_id: str,
    stock_update: StockUpdate,
    db: AsyncSession = Depends(get_db)
):
    product = await ProductService.decrement_stock(db, product_id, stock_update.quantity)
    if not product:
        raise NotFoundError("Product not found")
    return product


@router.post("/{product_id}/restore_stock", response_model=ProductResponse)
async def restore_stock(product_id: str, payload: StockUpdate, db: AsyncSession = Depends(get_db)):
    product = await ProductService.restore_stock(db, product_id, payload.quantity)
    if not product:
        raise NotFoundError("Product not found")
    return product
