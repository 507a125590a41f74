# ecoreco/api/v1/schemas/reco.py
from pydantic import BaseModel
from typing import List, Optional

class ProductOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float
    categories: List[str]
    sustainability_score: Optional[float] = None
    carbon_footprint: Optional[float] = None
    order_count: int
    image: Optional[str] = None
    stock: Optional[int] = None

class ProductListOut(BaseModel):
    items: List[ProductOut]
    count: int

    @classmethod
    def of(cls, products) -> "ProductListOut":
        items = [ProductOut.model_validate(p.model_dump()) for p in products]
        return cls(items=items, count=len(items))

class WarmupOut(BaseModel):
    warmed: bool

class RefreshOut(BaseModel):
    count: int
