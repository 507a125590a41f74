from pydantic import BaseModel, Field
from typing import Optional, List

class Product(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float = 0.0
    categories: List[str] = []
    sustainability_score: Optional[float] = Field(default=None, ge=0, le=100)
    carbon_footprint: Optional[float] = None
    order_count: int = Field(default=0, ge=0)
    image: Optional[str] = None
    stock: Optional[int] = None

    model_config = {"frozen": True}  # immuable = safe

class OrderItem(BaseModel):
    product_id: str
    name: str = ""
    description: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    price: float = 0.0
    categories: List[str] = []
    sustainability_score: Optional[float] = None
    carbon_footprint: Optional[float] = None
    model_config = {"frozen": True} # immuable = safe

class Order(BaseModel):
    id: str
    user_id: Optional[str] = None
    items: List[OrderItem] = []
    model_config = {"frozen": True} # immuable = safe

    @property
    def product_ids(self) -> set[str]:
        return {it.product_id for it in self.items}
