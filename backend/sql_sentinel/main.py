"""
SQL Sentinel - FastAPI Main Application
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from typing import Optional
import logging
import structlog
import time

from sql_sentinel.config import settings
from sql_sentinel.core.rbac import initialize_rbac
from sql_sentinel.database import get_app_db_context, init_app_db
from sql_sentinel.services.sentinel_service import SentinelService

# Configure structured logging
logging.basicConfig(format="%(message)s", level=logging.DEBUG if settings.DEBUG else logging.INFO)
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("application_startup", version=settings.APP_VERSION)

    if getattr(app.state, "sentinel", None) is None:
        try:
            init_app_db()
            with get_app_db_context() as db:
                initialize_rbac(db)
            logger.info("database_initialized")
        except Exception as e:
            logger.warning("database_init_failed", error=str(e))
        app.state.sentinel = SentinelService.create()

    yield

    # Shutdown
    closed = app.state.sentinel.shutdown_all()
    logger.info("application_shutdown", pools_closed=closed)


def create_app(service: Optional[SentinelService] = None) -> FastAPI:
    """Build the application. A prepared service skips metadata setup."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Permission gatekeeper and pooled execution for AI-generated SQL",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.sentinel = service

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add request timing to response headers."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        logger.warning("validation_error", errors=exc.errors(), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": jsonable_errors(exc),
                "message": "Validation error"
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error("unhandled_exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "message": str(exc) if settings.DEBUG else "An error occurred"
            }
        )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    def health_check():
        """Health check endpoint."""
        sentinel = app.state.sentinel
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "app": settings.APP_NAME,
            "active_pools": len(sentinel.active_pools()) if sentinel else 0,
            "engines": [engine.value for engine in sentinel.connection_manager.registry.available_engines()] if sentinel else []
        }

    from sql_sentinel.api import admin, query

    app.include_router(query.router, prefix="/api/query", tags=["Query"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without non-serializable context objects."""
    return [
        {key: value for key, value in error.items() if key in ("loc", "msg", "type")}
        for error in exc.errors()
    ]


app = create_app()
