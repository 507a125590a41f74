# ecoreco/domain/repositories/product_repo.py

from __future__ import annotations
from typing import Any, Optional, List
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from ecoreco.domain.models.product import Product

# Only what the recommender and the API response need
PRODUCT_PROJECTION = {
    "_id": 1,
    "name": 1,
    "description": 1,
    "price": 1,
    "category": 1,
    "categories": 1,
    "sustainabilityScore": 1,
    "carbonFootprint": 1,
    "image": 1,
    "countInStock": 1,
    "stock": 1,
}


def id_filter(raw_id: str) -> dict:
    """
    Match a document by `_id`.
    Mongoose ids are ObjectIds; anything else (seed data, fixtures) is matched as a plain string.
    """
    if ObjectId.is_valid(raw_id):
        return {"_id": {"$in": [ObjectId(raw_id), raw_id]}}
    return {"_id": raw_id}


def category_labels(doc: dict) -> List[str]:
    """
    Normalize the category field(s) into a list of distinct labels, first occurrence wins.
    Accepts `category: "Skincare"`, `categories: ["Skincare", ...]`
    and relational shapes like `categories: [{"name": "Skincare"}]`.
    """
    raw: list[Any] = []
    if isinstance(doc.get("categories"), list):
        raw.extend(doc["categories"])
    if doc.get("category"):
        raw.append(doc["category"])

    labels: List[str] = []
    for c in raw:
        label = c.get("name") if isinstance(c, dict) else c
        if label is None:
            continue
        label = str(label).strip()
        if label and label not in labels:
            labels.append(label)
    return labels


def _score(value) -> Optional[float]:
    if value is None:
        return None
    return min(100.0, max(0.0, float(value)))


def product_from_doc(doc: dict, order_count: int = 0) -> Product:
    stock = doc.get("countInStock", doc.get("stock"))
    return Product(
        id=str(doc["_id"]),
        name=doc.get("name") or "",
        description=doc.get("description"),
        price=float(doc.get("price") or 0),
        categories=category_labels(doc),
        sustainability_score=_score(doc.get("sustainabilityScore")),
        carbon_footprint=doc.get("carbonFootprint"),
        order_count=max(0, int(order_count or 0)),
        image=doc.get("image"),
        stock=int(stock) if stock is not None else None,
    )


class ProductRepo:
    """
    Read-only product repository backed by the storefront's 'products' collection.
    Writes belong to the catalog-management backend, never to this service.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "products"):
        self.col = db[collection_name]

    async def find_all(self) -> List[dict]:
        # Natural order is the catalog order used for tie-breaking downstream
        cursor = self.col.find({}, PRODUCT_PROJECTION)
        return [doc async for doc in cursor]

    async def get_by_id(self, product_id: str) -> Optional[dict]:
        return await self.col.find_one(id_filter(product_id), PRODUCT_PROJECTION)
