"""
Health check endpoints with database pool monitoring.
"""

import time

from fastapi import APIRouter

from fitscore.config import settings
from fitscore.db.pool import db_health_check
from fitscore.services.infrastructure.encryption_service import validate_encryption_config

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "fitscore"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: database pool plus the configuration every job needs.
    """
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"].update(db_health["pool_stats"])
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    config_issues = []
    required = {
        "SUPABASE_DB_URL": settings.SUPABASE_DB_URL,
        "ENCRYPTION_KEY": settings.ENCRYPTION_KEY,
        "PINECONE_API_KEY": settings.PINECONE_API_KEY,
        "PINECONE_INDEX_HOST": settings.PINECONE_INDEX_HOST,
        "OPENAI_API_KEY": settings.OPENAI_API_KEY,
        "HUBSPOT_CLIENT_ID": settings.HUBSPOT_CLIENT_ID,
        "HUBSPOT_CLIENT_SECRET": settings.HUBSPOT_CLIENT_SECRET,
        "SERVICE_API_TOKEN": settings.SERVICE_API_TOKEN,
    }
    for name, value in required.items():
        if not value:
            config_issues.append(f"{name} not set")
    if settings.ENCRYPTION_KEY and not validate_encryption_config():
        config_issues.append("ENCRYPTION_KEY cannot encrypt and decrypt")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
