# ecoreco/api/v1/routers/catalog.py
from fastapi import APIRouter, Depends, HTTPException, status
from typing import Annotated
import logging

from ecoreco.api.deps import reco_service
from ecoreco.api.v1.schemas.reco import RefreshOut
from ecoreco.domain.errors import StorageError
from ecoreco.domain.services.pipeline_svc import RecommendationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])


@router.post("/catalog/refresh", response_model=RefreshOut)
async def refresh_catalog(svc: Annotated[RecommendationService, Depends(reco_service)]):
    """Rebuild the products-with-order-counts snapshot without waiting for the TTL."""
    try:
        products = await svc.catalog.refresh()
    except StorageError as e:
        logger.error("catalog refresh failed: %s", e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="catalog storage unavailable")
    return RefreshOut(count=len(products))
