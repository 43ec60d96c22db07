# engagement/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from engagement.config import settings
from engagement.db.pool import db_health_check
from engagement.services.redis_client import fast_redis

router = APIRouter()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


async def _redis_check() -> dict:
    started = time.perf_counter()
    ok = await fast_redis.ping()
    return {"ok": ok, "latency_ms": _elapsed_ms(started)}


async def _database_check() -> dict:
    started = time.perf_counter()
    report = await db_health_check()

    check = {"ok": bool(report.get("healthy")), "latency_ms": _elapsed_ms(started)}
    check.update(report.get("pool_stats", {}))
    if not check["ok"]:
        check["error"] = report.get("error", "Database unhealthy")
    return check


@router.get("/healthz")
async def healthz():
    """Process is up."""
    return {"status": "ok", "service": "engagement-engine"}


@router.get("/readyz")
async def readyz():
    """Redis and the appointment store are reachable."""
    checks = {}
    for name, probe in (("redis", _redis_check), ("database", _database_check)):
        try:
            checks[name] = await probe()
        except Exception as e:
            checks[name] = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    checks["configuration"] = {
        "ok": True,
        "environment": settings.environment,
        "channels": settings.ENGAGEMENT_CHANNELS,
    }

    return {
        "overall_ok": all(check["ok"] for check in checks.values()),
        "checks": checks,
        "timestamp": time.time(),
    }
