"""
Health check endpoints: liveness, readiness (database pool + scheduler)
and per-job status.
"""

import time

from fastapi import APIRouter, Request

from campus_push.config import settings
from campus_push.db.pool import db_health_check
from campus_push.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "campus-push"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check with the database pool, scheduler and configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        latency_ms = round((time.time() - t0) * 1000, 1)

        checks["database"] = {"ok": is_healthy, "latency_ms": latency_ms}

        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "connection_time_ms": db_health.get("connection_time_ms", 0),
                }
            )

        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        log_health_check("database", is_healthy, latency_ms, db_health.get("error"))
        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Scheduler
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        checks["scheduler"] = {"ok": False, "error": "Push engine not initialized"}
        overall_ok = False
    elif settings.SCHEDULER_ENABLED:
        scheduler_health = engine.scheduler.health_check()
        checks["scheduler"] = {"ok": scheduler_health["healthy"], **scheduler_health}
        overall_ok = overall_ok and scheduler_health["healthy"]
    else:
        checks["scheduler"] = {"ok": True, "disabled": True}

    # 3) Configuration
    config_issues = []
    if settings.PUSH_MODE == "fcm" and not (
        settings.FCM_SERVICE_ACCOUNT_JSON or settings.FCM_SERVICE_ACCOUNT_PATH
    ):
        config_issues.append("FCM service account not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
        "push_mode": settings.PUSH_MODE,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/jobs")
async def jobs_health(request: Request):
    """Scheduler state and the last tick of every notification job."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return {"error": "Push engine not initialized", "scheduler_running": False, "jobs": []}
    return engine.scheduler.get_status()
