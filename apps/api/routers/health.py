"""
Health check endpoints.
"""

from fastapi import APIRouter
import redis.asyncio as redis

from config import configured_key, llm_api_key, settings

router = APIRouter()


def _provider_status() -> dict:
    speech_configured = configured_key(settings.ASSEMBLYAI_API_KEY) or configured_key(settings.OPENAI_API_KEY)
    return {
        "transcript_api": "configured" if configured_key(settings.TRANSCRIPT_API_KEY) else "fallback",
        "speech_to_text": "configured" if speech_configured else "fallback",
        "llm": "configured" if llm_api_key() else "fallback",
        "notes_store": "configured" if (settings.NOTES_SERVICE_URL or "").strip() else "missing",
    }


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "queue_mode": settings.ANALYSIS_QUEUE_MODE,
        "providers": _provider_status(),
    }

    # Check database connection
    try:
        from database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Redis only matters when jobs go through RQ
    if (settings.ANALYSIS_QUEUE_MODE or "inline").strip().lower() == "rq":
        try:
            r = redis.from_url(settings.REDIS_URL)
            await r.ping()
            await r.aclose()
            health_status["redis"] = "up"
        except Exception as e:
            health_status["redis"] = f"down: {str(e)}"
            health_status["status"] = "degraded"
    else:
        health_status["redis"] = "not required"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """
    Kubernetes-style readiness probe.
    Missing provider keys never block readiness; every provider has a fallback.
    """
    return {"ready": True, "providers": _provider_status()}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
