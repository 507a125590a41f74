# ecoreco/domain/services/pipeline_svc.py
import asyncio
import logging
import time
from typing import Iterable, List, Optional, Set

from ecoreco.core.config import Settings
from ecoreco.domain.errors import StorageError
from ecoreco.domain.models.product import Product
from ecoreco.domain.repositories.catalog_cache_repo import RedisSnapshotCache, SnapshotCache
from ecoreco.domain.repositories.order_repo import OrderRepo
from ecoreco.domain.repositories.product_repo import ProductRepo
from ecoreco.domain.services import candidates as cand
from ecoreco.domain.services.catalog_svc import CatalogAccessor
from ecoreco.domain.services.constants import DEFAULT_LIMIT, MIN_RANKED_IDS
from ecoreco.domain.services.ranker_svc import OllamaRanker

logger = logging.getLogger(__name__)

WARMUP_TASK_NAME = "ollama-warmup"


def _fill(primary: Iterable[Product], padding: Iterable[Product], limit: int, exclude: Set[str]) -> List[Product]:
    """
    `primary` first, then `padding`, skipping excluded and duplicate ids, stopping at `limit`.
    Padding is only ever appended; nothing is re-sorted.
    """
    out: List[Product] = []
    seen = set(exclude)
    for group in (primary, padding):
        for p in group:
            if len(out) >= limit:
                return out
            if p.id not in seen:
                seen.add(p.id)
                out.append(p)
    return out


class RecommendationService:
    """
    Recommendation orchestrator.

    Per request:
      1) Popularity fallback is prepared first (top-`limit` by units ordered, seed excluded).
      2) order_id → order-seeded candidates; product_id → product-seeded candidates; neither → fallback.
      3) If the LLM is enabled and its probe answers, try ranking the pool.
      4) Ranked ids win (padded with the rest of the pool); otherwise the pool in selection
         order, padded with popular products.
    Any failure along the way drops to the next tier. Callers always get a list,
    empty only when the catalog is empty or storage is down.
    """

    def __init__(
        self,
        catalog: CatalogAccessor,
        ranker: Optional[OllamaRanker] = None,
        *,
        use_llm: bool = True,
        sustainability_window: Optional[float] = None,
    ):
        self.catalog = catalog
        self.ranker = ranker
        self.use_llm = use_llm and ranker is not None
        self.sustainability_window = sustainability_window
        self._background: Set[asyncio.Task] = set()

    # ---- Inbound operations -------------------------------------------------

    async def get_recommendations(
        self,
        *,
        product_id: Optional[str] = None,
        order_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> List[Product]:
        limit = max(1, int(limit))
        t0 = time.perf_counter()
        logger.info("recommend start product_id=%s order_id=%s limit=%s llm=%s", product_id, order_id, limit, self.use_llm)
        try:
            items = await self._recommend(product_id, order_id, limit)
        except Exception:
            logger.exception("recommend failed product_id=%s order_id=%s, serving popular products", product_id, order_id)
            try:
                items = await self.get_popular_products(limit)
            except Exception:
                logger.exception("popular products fallback failed")
                items = []
        logger.info("recommend done items=%s total_time=%.3fs", len(items), time.perf_counter() - t0)
        return items

    async def get_popular_products(self, limit: int = DEFAULT_LIMIT) -> List[Product]:
        try:
            products = await self.catalog.get_products_with_counts()
        except StorageError as e:
            logger.error("popular products unavailable: %s", e)
            return []
        return cand.popular(products, max(1, int(limit)))

    async def prewarm_model(self) -> bool:
        if not self.use_llm:
            logger.info("ollama disabled, warmup skipped")
            return False
        return await self.ranker.warmup()

    def schedule_warmup(self) -> Optional[asyncio.Task]:
        """
        Start `prewarm_model()` as a named background task and return it.
        The task's outcome is only logged; nothing awaits it and its errors never reach a request.
        """
        if not self.use_llm:
            return None
        task = asyncio.create_task(self.prewarm_model(), name=WARMUP_TASK_NAME)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.info("background task %s cancelled", task.get_name())
        elif (exc := task.exception()) is not None:
            logger.error("background task %s failed: %r", task.get_name(), exc)
        else:
            logger.info("background task %s finished result=%s", task.get_name(), task.result())

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self.ranker is not None:
            await self.ranker.aclose()

    # ---- Pipeline -----------------------------------------------------------

    async def _recommend(self, product_id: Optional[str], order_id: Optional[str], limit: int) -> List[Product]:
        try:
            products = await self.catalog.get_products_with_counts()
        except StorageError as e:
            logger.error("catalog unavailable, no recommendations: %s", e)
            return []

        fallback = cand.popular(products, limit, exclude={product_id} if product_id else ())
        logger.debug("fallback prepared ids=%s", [p.id for p in fallback])

        if order_id:
            try:
                return await self._for_order(order_id, products, fallback, limit)
            except StorageError as e:
                logger.warning("order path storage error order_id=%s: %s", order_id, e)
                return fallback

        if product_id:
            try:
                return await self._for_product(product_id, products, fallback, limit)
            except StorageError as e:
                logger.warning("product path storage error product_id=%s: %s", product_id, e)
                return fallback

        return fallback

    async def _for_order(self, order_id: str, products: List[Product], fallback: List[Product], limit: int) -> List[Product]:
        order = await self.catalog.get_order_by_id(order_id)
        if not order or not order.items:
            logger.info("order %s missing or empty, using fallback", order_id)
            return fallback

        pool = cand.select_for_order(order, products, limit)
        bought = order.product_ids
        logger.info("order %s items=%s candidates=%s", order_id, len(order.items), len(pool))

        if len(pool) >= 2:
            categories = cand.order_categories(order, {p.id: p for p in products})
            ranked = await self._try_rank(order, pool, limit, categories=categories)
            if ranked is not None:
                return _fill(ranked, pool, limit, bought)

        return _fill(pool, cand.by_popularity(products), limit, bought)

    async def _for_product(self, product_id: str, products: List[Product], fallback: List[Product], limit: int) -> List[Product]:
        seed = next((p for p in products if p.id == product_id), None)
        if seed is None:
            # Product created after the snapshot was taken
            seed = await self.catalog.get_product_by_id(product_id)
        if seed is None or not seed.categories:
            logger.info("product %s missing or without categories, using fallback", product_id)
            return fallback

        pool = cand.select_for_product(seed, products, limit, sustainability_window=self.sustainability_window)
        excluded = {seed.id, product_id}
        logger.info("product %s categories=%s candidates=%s", product_id, seed.categories, len(pool))

        if len(pool) >= limit:
            ranked = await self._try_rank(seed, pool, limit)
            if ranked is not None:
                return _fill(ranked, pool, limit, excluded)

        return _fill(pool, cand.by_popularity(products), limit, excluded)

    async def _try_rank(self, context, pool: List[Product], limit: int, **kw) -> Optional[List[Product]]:
        """Ranked products in model order, or None to signal the deterministic path."""
        if not self.use_llm:
            return None
        if not await self.ranker.is_available():
            logger.info("ollama unavailable, skipping ranking")
            return None
        ids = await self.ranker.rank(context, pool, limit, **kw)
        if not ids:
            return None
        by_id = {p.id: p for p in pool}
        ranked = [by_id[i] for i in ids if i in by_id]
        if len(ranked) < min(MIN_RANKED_IDS, limit):
            logger.info("ranking kept %s pool ids, below threshold", len(ranked))
            return None
        return ranked


def build_recommendation_service(db, redis, settings: Settings) -> RecommendationService:
    """
    Wire the repositories, snapshot cache, ranker and orchestrator from settings.
    Redis, when connected, holds the shared catalog snapshot; otherwise it stays in-process.
    """
    if redis is not None:
        cache: SnapshotCache = RedisSnapshotCache(redis, settings.catalog_cache_key, ttl=settings.catalog_cache_ttl)
    else:
        cache = SnapshotCache(ttl=settings.catalog_cache_ttl)

    catalog = CatalogAccessor(
        ProductRepo(db, settings.products_collection),
        OrderRepo(db, settings.orders_collection),
        cache,
    )
    ranker = OllamaRanker.from_settings(settings) if settings.USE_OLLAMA else None
    return RecommendationService(
        catalog,
        ranker,
        use_llm=settings.USE_OLLAMA,
        sustainability_window=settings.RECO_SUSTAINABILITY_WINDOW,
    )
