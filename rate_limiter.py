from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from fastapi import Request
from config import settings

def get_client_ip(request: Request):
    """Get client IP with proxy support"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"

# Counters live in memory unless RATE_LIMIT_STORAGE_URI points at redis
limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[settings.rate_limit_api],
    storage_uri=settings.rate_limit_storage_uri
)

def job_creation_limit() -> str:
    return settings.rate_limit_jobs

def setup_rate_limiting(app):
    """Setup rate limiting for the FastAPI app"""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    return limiter
