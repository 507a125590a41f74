"""
Pytest configuration for the recommendation engine tests.

Storage is replaced by in-memory repositories returning Mongo-shaped documents,
so the real CatalogAccessor/product_from_doc path is exercised without a database.
"""
import os
from typing import Dict, List, Optional

import pytest

# Keep tests independent from any local .env / Ollama
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("USE_OLLAMA", "false")

from ecoreco.domain.repositories.catalog_cache_repo import SnapshotCache
from ecoreco.domain.services.catalog_svc import CatalogAccessor
from ecoreco.domain.services.pipeline_svc import RecommendationService


class ManualClock:
    """Controllable clock for TTL tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProductRepo:
    def __init__(self, docs: List[dict]):
        self.docs = docs
        self.find_all_calls = 0
        self.error: Optional[Exception] = None

    async def find_all(self) -> List[dict]:
        self.find_all_calls += 1
        if self.error:
            raise self.error
        return [dict(d) for d in self.docs]

    async def get_by_id(self, product_id: str) -> Optional[dict]:
        if self.error:
            raise self.error
        return next((dict(d) for d in self.docs if str(d["_id"]) == product_id), None)


class FakeOrderRepo:
    def __init__(self, orders: List[dict]):
        self.orders = orders
        self.error: Optional[Exception] = None

    async def get_by_id(self, order_id: str) -> Optional[dict]:
        if self.error:
            raise self.error
        return next((o for o in self.orders if str(o["_id"]) == order_id), None)

    async def product_order_counts(self) -> Dict[str, int]:
        if self.error:
            raise self.error
        counts: Dict[str, int] = {}
        for o in self.orders:
            for it in o.get("orderItems", []):
                pid = str(it["product"])
                counts[pid] = counts.get(pid, 0) + int(it.get("quantity", 1))
        return counts


class ExplodingRanker:
    """Ranker double that must never be touched; records any attempt."""

    def __init__(self):
        self.calls: List[str] = []

    async def is_available(self) -> bool:
        self.calls.append("is_available")
        raise AssertionError("ranker probed while it should be bypassed")

    async def rank(self, *args, **kwargs):
        self.calls.append("rank")
        raise AssertionError("ranker called while it should be bypassed")

    async def warmup(self) -> bool:
        self.calls.append("warmup")
        raise AssertionError("warmup called while it should be bypassed")

    async def aclose(self) -> None:
        pass


class StubRanker:
    """Ranker double with scripted availability and answer."""

    def __init__(self, available: bool = True, ids: Optional[List[str]] = None, warm: bool = True):
        self.available = available
        self.ids = ids
        self.warm = warm
        self.rank_calls: List[dict] = []
        self.probe_calls = 0
        self.closed = False

    async def is_available(self) -> bool:
        self.probe_calls += 1
        return self.available

    async def rank(self, context, candidates, limit, **kw):
        self.rank_calls.append({"context": context, "candidates": list(candidates), "limit": limit, **kw})
        return self.ids

    async def warmup(self) -> bool:
        return self.warm

    async def aclose(self) -> None:
        self.closed = True


def product_doc(pid: str, category, *, orders: int = 0, score: Optional[float] = None, **extra) -> dict:
    doc = {"_id": pid, "name": f"Product {pid}", "description": f"Description of {pid}", "price": 10.0}
    if isinstance(category, list):
        doc["categories"] = category
    elif category is not None:
        doc["category"] = category
    if score is not None:
        doc["sustainabilityScore"] = score
    doc.update(extra)
    return doc


def order_doc(oid: str, items: List[tuple], user: str = "u1") -> dict:
    """items: (product_id, quantity, category)"""
    return {
        "_id": oid,
        "user": user,
        "orderItems": [
            {"product": pid, "name": f"Product {pid}", "quantity": qty, "price": 10.0, "category": cat}
            for pid, qty, cat in items
        ],
    }


def popularity_order(*pairs: tuple) -> dict:
    """Synthetic 'history' order giving each product the requested number of units."""
    return order_doc("history", [(pid, qty, None) for pid, qty in pairs], user="someone")


def build_service(product_docs, order_docs, ranker=None, *, use_llm=True, clock=None, **kw):
    products = FakeProductRepo(product_docs)
    orders = FakeOrderRepo(order_docs)
    cache = SnapshotCache(ttl=300, clock=clock or ManualClock())
    catalog = CatalogAccessor(products, orders, cache)
    return RecommendationService(catalog, ranker, use_llm=use_llm, **kw)


@pytest.fixture
def clock():
    return ManualClock()
