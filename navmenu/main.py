"""
Navmenu application entry point
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from navmenu.config import settings
from navmenu.database import SessionLocal, engine, init_db
from navmenu.routers import auth, admin_menus, public_menus
from navmenu.security.auth import ensure_admin_user
from navmenu.security.rate_limit import RateLimitExceeded
from navmenu.services.query_monitor import (
    RequestScopedObserver, attach_query_observer, request_monitor,
)
from navmenu.services.resource_resolver import get_resource_registry

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/api/menus"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()

    registry = get_resource_registry()
    if registry.invalid:
        logger.error(f"Resource types disabled by configuration errors: {sorted(registry.invalid)}")

    if settings.ADMIN_USERNAME and settings.ADMIN_PASSWORD:
        db = SessionLocal()
        try:
            ensure_admin_user(db, settings.ADMIN_USERNAME, settings.ADMIN_PASSWORD)
        finally:
            db.close()

    logger.info(f"{settings.APP_NAME} started")
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Nested-set navigation menus with an admin API and a public resolution API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.QUERY_MONITORING_ENABLED:
    attach_query_observer(engine, RequestScopedObserver())


@app.middleware("http")
async def menu_query_performance(request: Request, call_next):
    """Per-request query statistics for the public menu API"""
    if not settings.QUERY_MONITORING_ENABLED or not request.url.path.startswith(PUBLIC_PREFIX):
        return await call_next(request)

    started = time.perf_counter()
    with request_monitor(settings.SLOW_QUERY_THRESHOLD_MS) as monitor:
        response = await call_next(request)
    stats = monitor.get_statistics()
    request_ms = (time.perf_counter() - started) * 1000

    if settings.PERFORMANCE_HEADERS:
        response.headers["X-Menu-Queries"] = str(stats["total_queries"])
        response.headers["X-Menu-Query-Time"] = f"{stats['total_time']}ms"
        response.headers["X-Menu-Request-Time"] = f"{request_ms:.2f}ms"

    if request_ms > settings.PERFORMANCE_LOG_THRESHOLD_MS or stats["slow_queries_count"]:
        logger.info(
            f"Menu query performance metrics: {request.method} {request.url.path} "
            f"request_time={request_ms:.2f}ms queries={stats['total_queries']} "
            f"query_time={stats['total_time']}ms slow={stats['slow_queries_count']} "
            f"n_plus_one={len(stats['query_analysis']['n_plus_one_potential'])}"
        )
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "message": f"Rate limit of {settings.RATE_LIMIT_PER_MINUTE} requests per minute exceeded",
        },
        headers={"Retry-After": str(exc.retry_after)},
    )


app.include_router(auth.router)
app.include_router(public_menus.router)
app.include_router(admin_menus.menu_router)
app.include_router(admin_menus.item_router)
app.include_router(admin_menus.resource_router)


@app.get("/health")
def health_check():
    return {"status": "healthy"}
