# xaiforge/api.py
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import uvicorn

from xaiforge import __version__
from xaiforge.config.settings import settings
from xaiforge.middlewares.error_handling import register_exception_handlers
from xaiforge.routers import datasets, models
from xaiforge.services.explanation import shutdown_thread_pool

# Prometheus metrics
REQUEST_COUNT = Counter(
    'xaiforge_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

REQUEST_DURATION = Histogram(
    'xaiforge_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"Starting {settings.app_name} ({settings.environment})...")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    shutdown_thread_pool()


app = FastAPI(
    title="XAI Forge API",
    description="Train tabular models and explain their individual predictions",
    version=__version__,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
    openapi_url="/openapi.json" if settings.environment != "production" else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)


def _endpoint_label(request: Request) -> str:
    # Route template keeps metric cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


@app.middleware("http")
async def request_tracking_middleware(request: Request, call_next):
    """Middleware for logging and monitoring HTTP requests."""
    start_time = time.time()
    request_id = f"req_{uuid.uuid4().hex[:12]}"
    request.state.request_id = request_id

    logger.info(
        f"Request {request_id}: {request.method} {request.url.path} "
        f"from {request.client.host if request.client else 'unknown'}"
    )

    try:
        response = await call_next(request)
    except Exception as e:
        duration = time.time() - start_time
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=_endpoint_label(request),
            status_code=500
        ).inc()
        logger.error(f"Request {request_id} failed in {duration:.3f}s: {e}")
        raise

    duration = time.time() - start_time
    endpoint = _endpoint_label(request)
    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status_code=response.status_code
    ).inc()
    REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(duration)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.3f}s"
    logger.info(f"Response {request_id}: {response.status_code} in {duration:.3f}s")
    return response


register_exception_handlers(app)

app.include_router(datasets.router, prefix="/api/v1")
app.include_router(models.router, prefix="/api/v1")


@app.get("/health", tags=["Health"], response_model=Dict[str, Any])
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": __version__,
        "environment": settings.environment,
    }


@app.get("/metrics", tags=["Monitoring"])
def get_metrics():
    """Prometheus metrics endpoint."""
    return PlainTextResponse(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


if __name__ == "__main__":
    uvicorn.run(
        "xaiforge.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
