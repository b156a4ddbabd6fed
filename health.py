from fastapi import APIRouter, HTTPException, Request
import redis
from config import settings
from rate_limiter import limiter
import psutil
from datetime import datetime, timezone

health_router = APIRouter()

@health_router.get("")
@limiter.exempt
def health_check():
    """Basic health check"""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

@health_router.get("/detailed")
@limiter.exempt
def detailed_health_check(request: Request):
    """Detailed health check with dependencies"""
    store = request.app.state.store
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {}
    }

    # Job store check
    try:
        if store.ping():
            health_status["checks"]["store"] = {
                "status": "healthy",
                "backend": type(store).__name__
            }
        else:
            health_status["checks"]["store"] = {
                "status": "unhealthy",
                "backend": type(store).__name__
            }
            health_status["status"] = "unhealthy"
    except Exception as e:
        health_status["checks"]["store"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "unhealthy"

    # Redis check, only when rate limit counters live there
    if settings.rate_limit_storage_uri.startswith("redis"):
        try:
            redis_conn = redis.from_url(settings.rate_limit_storage_uri)
            redis_conn.ping()
            health_status["checks"]["redis"] = {"status": "healthy"}
        except Exception as e:
            health_status["checks"]["redis"] = {
                "status": "unhealthy",
                "error": str(e)
            }
            health_status["status"] = "unhealthy"

    # System resources
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')

        health_status["checks"]["system"] = {
            "status": "healthy",
            "cpu_percent": cpu_percent,
            "memory_percent": memory.percent,
            "disk_percent": disk.percent
        }

        if cpu_percent > 90 or memory.percent > 90 or disk.percent > 90:
            health_status["checks"]["system"]["status"] = "warning"

    except Exception as e:
        health_status["checks"]["system"] = {
            "status": "unhealthy",
            "error": str(e)
        }

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status

@health_router.get("/ready")
@limiter.exempt
def readiness_check(request: Request):
    """Kubernetes readiness check"""
    if not request.app.state.store.ping():
        raise HTTPException(
            status_code=503,
            detail={"status": "not ready", "error": "job store unreachable"}
        )
    return {"status": "ready"}

@health_router.get("/live")
@limiter.exempt
def liveness_check():
    """Kubernetes liveness check"""
    return {"status": "alive"}
