# ecoreco/domain/services/catalog_svc.py
import logging
import time
from typing import List, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from ecoreco.domain.errors import StorageError
from ecoreco.domain.models.product import Order, Product
from ecoreco.domain.repositories.catalog_cache_repo import SnapshotCache
from ecoreco.domain.repositories.order_repo import order_from_doc
from ecoreco.domain.repositories.product_repo import product_from_doc

logger = logging.getLogger(__name__)


def _product_or_none(doc: dict, order_count: int) -> Optional[Product]:
    try:
        return product_from_doc(doc, order_count)
    except (KeyError, ValueError, TypeError, ValidationError) as e:
        logger.warning("skipping unreadable product _id=%s: %s", doc.get("_id"), e)
        return None


class CatalogAccessor:
    """
    Moderately fresh view of the catalog for the recommender.

    - get_products_with_counts(): cached snapshot (TTL), products annotated with units ordered
    - get_product_by_id() / get_order_by_id(): direct reads, no caching
    Driver failures surface as StorageError; mapping them to a fallback is the caller's job.
    """

    def __init__(self, product_repo, order_repo, cache: Optional[SnapshotCache] = None):
        self.product_repo = product_repo
        self.order_repo = order_repo
        self.cache = cache or SnapshotCache()

    async def get_products_with_counts(self) -> List[Product]:
        if (cached := await self.cache.get()) is not None:
            logger.debug("catalog cache_hit items=%s", len(cached))
            return cached
        logger.info("catalog cache_miss, recomputing snapshot")
        return await self.refresh()

    async def refresh(self) -> List[Product]:
        """Rebuild the snapshot from storage regardless of its age. Unreadable documents are skipped."""
        t0 = time.perf_counter()
        try:
            docs = await self.product_repo.find_all()
            counts = await self.order_repo.product_order_counts()
        except PyMongoError as e:
            raise StorageError(f"catalog snapshot failed: {e}") from e

        products = []
        for d in docs:
            product = _product_or_none(d, counts.get(str(d.get("_id")), 0))
            if product is not None:
                products.append(product)
        await self.cache.set(products)
        logger.info(
            "catalog snapshot refreshed products=%s with_orders=%s time=%.3fs",
            len(products), sum(1 for p in products if p.order_count), time.perf_counter() - t0,
        )
        return products

    async def invalidate(self) -> None:
        await self.cache.invalidate()

    async def get_product_by_id(self, product_id: str) -> Optional[Product]:
        try:
            doc = await self.product_repo.get_by_id(product_id)
        except PyMongoError as e:
            raise StorageError(f"product lookup failed id={product_id}: {e}") from e
        if not doc:
            return None

        # Order count is only known through the snapshot; use it when warm
        count = 0
        if (cached := await self.cache.get()) is not None:
            count = next((p.order_count for p in cached if p.id == str(doc["_id"])), 0)
        return _product_or_none(doc, count)

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        try:
            doc = await self.order_repo.get_by_id(order_id)
        except PyMongoError as e:
            raise StorageError(f"order lookup failed id={order_id}: {e}") from e
        return order_from_doc(doc) if doc else None
