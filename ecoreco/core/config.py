from functools import lru_cache
from typing import Literal, Optional
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["development", "production"]

def _env_file_for(app_env: EnvName) -> str:
    return ".env.development" if app_env == "development" else ".env.production"

class Settings(BaseSettings):

    # Core
    APP_ENV: EnvName = "development"
    APP_NAME: str = "EcoReco"
    DEBUG: bool = False
    GIT_SHA: str = "unknown"

    # Mongo (storefront database, read-only here)
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "ecommerce"
    MONGO_TLS: bool = False
    products_collection: str = "products"
    orders_collection: str = "orders"

    # Redis (optional shared snapshot cache)
    REDIS_URL: Optional[str] = None

    # Catalog snapshot cache
    catalog_cache_ttl: int = 5 * 60              # 5 minutes
    catalog_cache_key: str = "catalog:products_with_counts"

    # Ollama
    OLLAMA_URL: str = "http://localhost:11434/api/generate"
    OLLAMA_MODEL: str = "llama3.2:1b"
    USE_OLLAMA: bool = True
    ollama_probe_timeout_s: float = 3.0          # liveness probe
    ollama_timeout_s: float = 15.0               # ranking call

    # Candidate selection
    RECO_SUSTAINABILITY_WINDOW: Optional[float] = None  # e.g. 20; None disables

    # API
    ALLOWED_ORIGINS: str = ""

    # pydantic-settings config will be set dynamically in the factory below
    model_config = SettingsConfigDict(env_file=None, case_sensitive=True)

@lru_cache
def get_settings() -> Settings:
    """
    Factory that chooses the right .env file based on APP_ENV.
    Cache makes it cheap to inject via FastAPI dependencies.
    """
    app_env: EnvName = os.getenv("APP_ENV", "development")  # earliest switch
    env_file = _env_file_for(app_env)
    return Settings(
                _env_file=env_file,  # load .env.development or .env.production
                _env_file_encoding="utf-8"
    )
