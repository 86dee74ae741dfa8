# app/routes/health.py
"""
Health check endpoints: liveness, plus scheduler and background queue status.
"""

import time

from fastapi import APIRouter

from app.jobs.escalation_job import escalation_job_health, get_escalation_job_status
from app.services.completion.dispatcher import background_dispatcher
from app.services.infrastructure.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "ooosh-operations"}


@router.get("/health")
async def health():
    """Scheduler status, background queue depth and the optional Redis claim store."""
    checks = {}
    overall_ok = True

    escalation = escalation_job_health()
    checks["escalation"] = {**escalation, "status": get_escalation_job_status()}
    overall_ok = overall_ok and escalation["healthy"]

    dispatcher_status = background_dispatcher.get_status()
    dispatcher_ok = dispatcher_status["mode"] == "remote" or dispatcher_status["running"]
    checks["background"] = {"ok": dispatcher_ok, **dispatcher_status}
    overall_ok = overall_ok and dispatcher_ok

    if fast_redis.configured:
        t0 = time.time()
        try:
            redis_ok = await fast_redis.ping()
            checks["redis"] = {
                "ok": bool(redis_ok),
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
        except Exception as e:
            redis_ok = False
            checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        # Claims fall back to memory; Redis down is degraded, not failed
        if not redis_ok:
            checks["redis"]["fallback"] = "in_memory"
    else:
        checks["redis"] = {"ok": True, "configured": False}

    return {"status": "ok" if overall_ok else "degraded", "checks": checks}
