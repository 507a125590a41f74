# ecoreco/api/v1/routers/recommendations.py
from fastapi import APIRouter, Depends, Query
from typing import Annotated, Optional
import time
import logging

from ecoreco.api.deps import reco_service
from ecoreco.api.v1.schemas.reco import ProductListOut, WarmupOut
from ecoreco.domain.services.constants import DEFAULT_LIMIT, MAX_LIMIT
from ecoreco.domain.services.pipeline_svc import RecommendationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])

ServiceDep = Annotated[RecommendationService, Depends(reco_service)]
LimitQuery = Annotated[int, Query(ge=1, le=MAX_LIMIT)]


async def _recommend(svc: RecommendationService, *, product_id, order_id, limit) -> ProductListOut:
    t0 = time.perf_counter()
    items = await svc.get_recommendations(product_id=product_id, order_id=order_id, limit=limit)
    logger.info(
        "Response: recommendations product_id=%s order_id=%s count=%s elapsed_time=%.4fs",
        product_id, order_id, len(items), time.perf_counter() - t0,
    )
    return ProductListOut.of(items)


@router.get("/recommendations", response_model=ProductListOut)
async def recommendations(
    svc: ServiceDep,
    product_id: Optional[str] = Query(None, description="Seed: product being viewed"),
    order_id: Optional[str] = Query(None, description="Seed: completed order (takes precedence)"),
    limit: LimitQuery = DEFAULT_LIMIT,
):
    """
    Recommendations for a product or an order; popular products when neither is given.
    Never fails: an empty list means no recommendations are available.
    """
    return await _recommend(svc, product_id=product_id, order_id=order_id, limit=limit)


@router.get("/products/popular", response_model=ProductListOut)
async def popular_products(svc: ServiceDep, limit: LimitQuery = DEFAULT_LIMIT):
    t0 = time.perf_counter()
    items = await svc.get_popular_products(limit)
    logger.info("Response: popular_products count=%s elapsed_time=%.4fs", len(items), time.perf_counter() - t0)
    return ProductListOut.of(items)


@router.get("/products/{product_id}/recommendations", response_model=ProductListOut)
async def product_recommendations(product_id: str, svc: ServiceDep, limit: LimitQuery = DEFAULT_LIMIT):
    return await _recommend(svc, product_id=product_id, order_id=None, limit=limit)


@router.get("/orders/{order_id}/recommendations", response_model=ProductListOut)
async def order_recommendations(order_id: str, svc: ServiceDep, limit: LimitQuery = DEFAULT_LIMIT):
    return await _recommend(svc, product_id=None, order_id=order_id, limit=limit)


@router.post("/recommendations/warmup", response_model=WarmupOut)
async def warmup_model(svc: ServiceDep):
    """Load the ranking model now; waits for the model, however long that takes."""
    return WarmupOut(warmed=await svc.prewarm_model())
