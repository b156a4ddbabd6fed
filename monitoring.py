from fastapi import Request
import time
import logging
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response as FastAPIResponse
from rate_limiter import limiter

logger = logging.getLogger(__name__)

# Prometheus metrics
request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration',
    ['method', 'endpoint']
)

job_count = Counter(
    'jobs_total',
    'Job lifecycle transitions',
    ['status']
)

email_count = Counter(
    'completion_emails_total',
    'Completion emails by outcome',
    ['status']
)

class MonitoringMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        start_time = time.time()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration = time.time() - start_time
                status_code = message["status"]
                # Route template keeps job ids out of the label values
                route = scope.get("route")
                endpoint = getattr(route, "path", request.url.path)

                request_count.labels(
                    method=request.method,
                    endpoint=endpoint,
                    status=status_code
                ).inc()

                request_duration.labels(
                    method=request.method,
                    endpoint=endpoint
                ).observe(duration)

                logger.info(
                    f"{request.method} {request.url.path} "
                    f"- {status_code} - {duration:.3f}s"
                )

            await send(message)

        await self.app(scope, receive, send_wrapper)

def setup_monitoring(app):
    """Setup monitoring middleware and endpoints"""

    app.add_middleware(MonitoringMiddleware)

    @app.get("/metrics", include_in_schema=False)
    @limiter.exempt
    def get_metrics():
        """Prometheus metrics endpoint"""
        return FastAPIResponse(
            generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )
