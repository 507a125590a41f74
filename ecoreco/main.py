from fastapi import FastAPI
from ecoreco.core.config import get_settings
from ecoreco.core.lifespan import lifespan
from ecoreco.api.v1.routers.health import router as health_router
from ecoreco.api.v1.routers.recommendations import router as recommendations_router
from ecoreco.api.v1.routers.catalog import router as catalog_router
from ecoreco.core.logging import configure_logging

from fastapi.middleware.cors import CORSMiddleware
import logging

settings = get_settings()
configure_logging(level=logging.DEBUG if settings.DEBUG else logging.INFO)

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# ------- CORS -------
# ALLOWED_ORIGINS is a CSV, e.g. "http://localhost:3000,https://shop.example"
allowed_origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins or ["http://localhost:3000"],  # storefront dev server
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)

# ------- Routes -------
app.include_router(health_router)
app.include_router(recommendations_router)   # recommendations, popular, warmup
app.include_router(catalog_router)           # snapshot refresh
