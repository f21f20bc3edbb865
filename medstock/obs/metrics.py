import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# ledger / prescriptions
ledger_appends_total = Counter(
    "medstock_ledger_appends_total", "Stock ledger rows written", ["type", "reason"]
)
prescriptions_total = Counter(
    "medstock_prescriptions_total", "Prescription outcomes", ["outcome"]
)
batch_lock_wait_seconds = Histogram(
    "medstock_batch_lock_wait_seconds", "Time spent acquiring batch locks"
)
stock_events_emitted_total = Counter(
    "medstock_stock_events_emitted_total", "Outbox events written", ["topic"]
)
ledger_mismatch_total = Counter(
    "medstock_ledger_mismatch_total", "Batches whose quantity disagrees with the ledger"
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response
