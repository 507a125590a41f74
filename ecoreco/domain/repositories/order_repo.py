# ecoreco/domain/repositories/order_repo.py

from __future__ import annotations
from typing import Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from ecoreco.domain.models.product import Order, OrderItem
from ecoreco.domain.repositories.product_repo import category_labels, id_filter


def order_from_doc(doc: dict) -> Order:
    items: List[OrderItem] = []
    for it in doc.get("orderItems") or []:
        if it.get("product") is None:
            continue
        items.append(OrderItem(
            product_id=str(it["product"]),
            name=it.get("name") or "",
            description=it.get("description"),
            quantity=max(1, int(it.get("quantity") or 1)),
            price=float(it.get("price") or 0),
            categories=category_labels(it),
            sustainability_score=it.get("sustainabilityScore"),
            carbon_footprint=it.get("carbonFootprint"),
        ))
    user = doc.get("user")
    return Order(id=str(doc["_id"]), user_id=str(user) if user is not None else None, items=items)


class OrderRepo:
    """
    Read-only access to the 'orders' collection.
    Line items are embedded under `orderItems` (Mongoose subdocuments).
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "orders"):
        self.col = db[collection_name]

    async def get_by_id(self, order_id: str) -> Optional[dict]:
        return await self.col.find_one(id_filter(order_id), {"_id": 1, "user": 1, "orderItems": 1})

    async def product_order_counts(self) -> Dict[str, int]:
        """
        Units ordered per product id, summed over every order line item.
        """
        pipeline = [
            {"$unwind": "$orderItems"},
            {"$group": {
                "_id": "$orderItems.product",
                "orderCount": {"$sum": {"$ifNull": ["$orderItems.quantity", 1]}},
            }},
        ]
        docs = await self.col.aggregate(pipeline).to_list(length=None)
        return {str(d["_id"]): int(d.get("orderCount") or 0) for d in docs if d.get("_id") is not None}
