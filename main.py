"""
main.py
FastAPI application entry point for every process of the platform.
One codebase, five apps: create_app(<service>) builds the gateway or one
of the four backend services with its routers, middleware, and lifecycle.

Run a service:
    python main.py bookings
    SERVICE_NAME=payments uvicorn main:app --port 3003
"""

import argparse
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config.database import DATABASES, bookings_db
from config.log import configure_logging
from config.redis_client import FixedWindowRateLimiter, close_redis, init_redis
from config.registry import ServiceRegistry
from config.settings import settings
from shared.utils.errors import DownstreamUnavailable

# Service routers
from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.catalog.router import router as catalog_router
from services.gateway.router import router as gateway_router
from services.notification.router import router as notification_router
from services.payment.router import router as payment_router
from services.user.router import router as user_router

configure_logging()
logger = logging.getLogger(__name__)


SERVICES = {
    "gateway": {
        "title": "API Gateway",
        "routers": [gateway_router],
    },
    "users": {
        "title": "User Service",
        "routers": [auth_router, user_router],
    },
    "bookings": {
        "title": "Booking Service",
        "routers": [catalog_router, booking_router],
    },
    "payments": {
        "title": "Payment Service",
        "routers": [payment_router],
    },
    "notifications": {
        "title": "Notification Service",
        "routers": [notification_router],
    },
}

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."
RATE_LIMIT_SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}

CATALOG_SEED = "catalog-v1"
SEED_CATALOG_ITEMS = [
    {
        "name": "Luxury Beach Resort",
        "category": "hotel",
        "description": "Beautiful beachfront resort with stunning ocean views",
        "unit_price": "299.99",
        "location": "Maldives",
        "image_url": "https://images.pexels.com/photos/189296/pexels-photo-189296.jpeg",
    },
    {
        "name": "Mountain Cabin Retreat",
        "category": "hotel",
        "description": "Cozy cabin in the mountains perfect for relaxation",
        "unit_price": "149.99",
        "location": "Colorado",
        "image_url": "https://images.pexels.com/photos/338504/pexels-photo-338504.jpeg",
    },
    {
        "name": "Flight to Paris",
        "category": "flight",
        "description": "Direct flight to the city of lights",
        "unit_price": "599.99",
        "location": "Paris, France",
        "image_url": "https://images.pexels.com/photos/358319/pexels-photo-358319.jpeg",
    },
    {
        "name": "Tech Conference 2024",
        "category": "event",
        "description": "Annual technology conference with industry leaders",
        "unit_price": "199.99",
        "location": "San Francisco",
        "image_url": "https://images.pexels.com/photos/1181396/pexels-photo-1181396.jpeg",
    },
    {
        "name": "Music Festival Weekend",
        "category": "event",
        "description": "Three-day music festival featuring top artists",
        "unit_price": "249.99",
        "location": "Austin, Texas",
        "image_url": "https://images.pexels.com/photos/1105666/pexels-photo-1105666.jpeg",
    },
    {
        "name": "Tokyo Adventure",
        "category": "flight",
        "description": "Experience the vibrant culture of Tokyo",
        "unit_price": "899.99",
        "location": "Tokyo, Japan",
        "image_url": "https://images.pexels.com/photos/2506923/pexels-photo-2506923.jpeg",
    },
]


# ── Lifespan (startup/shutdown) ───────────────────────────────

def build_lifespan(service_name: str):
    database = DATABASES.get(service_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle handler."""
        logger.info(f"Starting {SERVICES[service_name]['title']}...")

        if database:
            await database.init()
            logger.info(f"Database ready: {database.name}")

        if service_name == "bookings" and settings.SEED_CATALOG:
            await seed_initial_data()

        if service_name == "gateway":
            client = await init_redis()
            try:
                await client.ping()
                logger.info("Redis connected")
            except RedisError as e:
                logger.warning(f"Redis unavailable, rate limiting will fail open: {e}")
            app.state.rate_limiter = FixedWindowRateLimiter(
                client, settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS
            )

        logger.info(f"{settings.APP_NAME} {service_name} v{settings.APP_VERSION} is ready")
        yield

        # Cleanup
        if service_name == "gateway":
            if app.state.http_client is not None:
                await app.state.http_client.aclose()
            await close_redis()
        if database:
            await database.dispose()
        logger.info(f"{service_name} shutdown complete")

    return lifespan


# ── App Factory ───────────────────────────────────────────────

def create_app(service_name: str) -> FastAPI:
    if service_name not in SERVICES:
        raise ValueError(f"Unknown service {service_name!r}; expected one of {sorted(SERVICES)}")

    service = SERVICES[service_name]
    database = DATABASES.get(service_name)

    app = FastAPI(
        title=f"{settings.APP_NAME} - {service['title']}",
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=build_lifespan(service_name),
    )
    app.state.service_name = service_name

    if service_name == "gateway":
        app.state.registry = ServiceRegistry.from_settings()
        app.state.http_client = None
        app.state.rate_limiter = None

    # ── Middleware ─────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for distributed tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    if service_name == "gateway":

        @app.middleware("http")
        async def rate_limit_middleware(request: Request, call_next):
            """
            Fixed-window limit per client IP, counted in Redis.
            Fails open when Redis is down.
            """
            if request.url.path in RATE_LIMIT_SKIP_PATHS:
                return await call_next(request)

            limiter = request.app.state.rate_limiter
            if limiter is not None:
                client_ip = request.client.host if request.client else "unknown"
                try:
                    result = await limiter.hit(f"ip:{client_ip}")
                except (RedisError, OSError) as e:
                    logger.error(f"Rate limit check failed: {e}")
                else:
                    if not result.allowed:
                        logger.warning(f"Rate limit exceeded for IP {client_ip}")
                        return JSONResponse(
                            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                            content={"detail": RATE_LIMIT_MESSAGE},
                            headers={"Retry-After": str(result.retry_after)},
                        )

            return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(DownstreamUnavailable)
    async def downstream_unavailable_handler(request: Request, exc: DownstreamUnavailable):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"] if part != "body"),
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Validation failed", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {exc}", exc_info=exc)

        detail = str(exc) if settings.DEBUG else "An internal server error occurred"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": detail, "request_id": request_id},
        )

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        checks = {
            "service": service_name,
            "status": "ok",
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if database:
            try:
                await database.ping()
                checks["database"] = "ok"
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Health check: database {database.name} unreachable: {e}")
                checks["database"] = "error"
                checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": app.title,
            "service": service_name,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    for router in service["routers"]:
        app.include_router(router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Catalog Seeder ────────────────────────────────────────────

async def seed_initial_data() -> bool:
    """
    Insert the sample catalog once. The SeedMarker row is written in the
    same transaction, so a restart (or a second instance) skips the seed.
    """
    from shared.models.models import CatalogCategory, CatalogItem, SeedMarker

    async with bookings_db.session() as db:
        if await db.get(SeedMarker, CATALOG_SEED):
            return False

        db.add(SeedMarker(name=CATALOG_SEED))
        try:
            await db.flush()
        except IntegrityError:
            # Another instance claimed the seed first
            await db.rollback()
            return False

        for item in SEED_CATALOG_ITEMS:
            db.add(
                CatalogItem(
                    **{
                        **item,
                        "category": CatalogCategory(item["category"]),
                        "unit_price": Decimal(item["unit_price"]),
                    }
                )
            )

    logger.info(f"Seeded {len(SEED_CATALOG_ITEMS)} catalog items ({CATALOG_SEED})")
    return True


# ── Entry Point ───────────────────────────────────────────────

def run() -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="Run one service of the booking platform")
    parser.add_argument("service", nargs="?", default=settings.SERVICE_NAME, choices=sorted(SERVICES))
    parser.add_argument("--host", default=settings.HOST)
    parser.add_argument("--port", type=int, default=None)
    args = parser.parse_args()

    uvicorn.run(
        create_app(args.service),
        host=args.host,
        port=args.port or settings.service_ports[args.service],
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )


if __name__ == "__main__":
    run()
else:
    # Imported by an ASGI server as main:app
    app = create_app(settings.SERVICE_NAME)
