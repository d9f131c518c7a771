from typing import Optional
from pydantic import BaseModel, Field


class ProductCreate(BaseModel):
    id: Optional[str] = None
    name: str
    price: float = Field(ge=0)
    stock: int = Field(default=0, ge=0)


class ProductResponse(BaseModel):
    id: str
    name: str
    price: float
    stock: int
    in_stock: bool

    class Config:
        from_attributes = True


class StockUpdate(BaseModel):
    quantity: int = Field(gt=0)
