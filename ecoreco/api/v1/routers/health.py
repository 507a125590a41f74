# ecoreco/api/v1/routers/health.py
import time
import subprocess
from fastapi import APIRouter, Request
from ecoreco.core.config import get_settings
from ecoreco.db import mongo
from ecoreco.db.redis import get_redis  # returns Redis instance or None

router = APIRouter(tags=["health"])
START_TIME = time.time()


def _git_sha(short: bool = True) -> str:
    try:
        cmd = ["git", "rev-parse", "--short" if short else "HEAD"]
        return subprocess.check_output(cmd).decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


@router.get("/health")
async def health(request: Request):
    """
    Tolerant health check:
    - Mongo ping (required)
    - Redis 'skipped' when not configured
    - Ollama probe, 'disabled' when USE_OLLAMA=false; informational only,
      recommendations degrade to fallbacks without it
    """
    settings = get_settings()
    checks: dict[str, object] = {
        "app_name": settings.APP_NAME,
        "env": settings.APP_ENV,
        "debug": settings.DEBUG,
        "version": settings.GIT_SHA if settings.GIT_SHA != "unknown" else _git_sha(),
        "uptime_seconds": int(time.time() - START_TIME),
    }

    # --- Mongo ---
    try:
        db = mongo.get_db()
        await db.command("ping")
        checks["mongodb"] = "ok"
    except Exception as e:
        checks["mongodb"] = f"error: {e}"

    # --- Redis ---
    try:
        r = get_redis()
        if r:
            await r.ping()
            checks["redis"] = "ok"
        else:
            checks["redis"] = "skipped"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    # --- Ollama ---
    svc = getattr(request.app.state, "reco_service", None)
    if svc is None or not svc.use_llm:
        checks["ollama"] = "disabled"
    else:
        checks["ollama"] = "ok" if await svc.ranker.is_available() else "unavailable"

    def _is_ok(v):
        return v in ("ok", "skipped")

    health_keys = ("mongodb", "redis")
    status = "ok" if all(_is_ok(checks.get(k)) for k in health_keys) else "error"

    return {"status": status, "checks": checks, "timestamp": int(time.time())}
