# ecoreco/core/lifespan.py
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from ecoreco.db import mongo, redis as r
from ecoreco.core.config import get_settings
from ecoreco.domain.services.pipeline_svc import build_recommendation_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # --- Startup ---
    await mongo.connect()
    await r.connect()

    service = build_recommendation_service(mongo.get_db(), r.get_redis(), settings)
    app.state.reco_service = service

    # Model loading can take minutes; never block startup on it
    if service.schedule_warmup() is not None:
        logger.info("Ollama warmup scheduled model=%s", settings.OLLAMA_MODEL)

    yield

    # --- Shutdown ---
    await service.aclose()
    await r.disconnect()
    await mongo.disconnect()
    logger.info("Shutdown complete")
