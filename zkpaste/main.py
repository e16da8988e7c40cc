from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import Engine
from sqlalchemy.orm import sessionmaker

from zkpaste import database
from zkpaste.config import Settings, settings as default_settings
from zkpaste.database import missing_tables
from zkpaste.dependencies import Services
from zkpaste.errors import PasteError
from zkpaste.logging_config import setup_logging
from zkpaste.middleware.logging import LoggingMiddleware
from zkpaste.middleware.rate_limit import limiter
from zkpaste.middleware.security_headers import SecurityHeadersMiddleware
from zkpaste.routers import challenges, pastes
from zkpaste.scheduler import shutdown_scheduler, start_scheduler

# Database tables are managed by Alembic migrations
# Run: alembic upgrade head

logger = structlog.get_logger()


def check_database_tables(engine: Engine | None = None) -> None:
    """Refuse to start against a database that has not been migrated."""
    missing = missing_tables(engine if engine is not None else database.engine)
    if missing:
        raise RuntimeError(
            f"Database tables missing: {', '.join(sorted(missing))}. "
            "Run `make migrate` (alembic upgrade head) before starting the server."
        )


async def paste_error_handler(request: Request, exc: PasteError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.reason})


def create_app(settings: Settings | None = None, engine: Engine | None = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the process-lifetime services and start/stop the scheduler."""
        setup_logging(settings)
        bind = engine if engine is not None else database.engine
        check_database_tables(bind)

        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=bind)
        services = Services.from_settings(settings, session_factory)
        app.state.services = services

        scheduler = None
        if settings.cleanup_interval_minutes > 0:
            scheduler = start_scheduler(services, settings.cleanup_interval_minutes)

        logger.info(
            "app_started",
            pow_enabled=settings.pow_enabled,
            pow_difficulty=settings.pow_difficulty,
            rate_limit_enabled=settings.rate_limit_enabled,
        )
        try:
            yield
        finally:
            if scheduler is not None:
                shutdown_scheduler(scheduler)
            app.state.services = None

    app = FastAPI(
        title="zkpaste",
        description="Zero-knowledge self-destructing paste service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(PasteError, paste_error_handler)

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    # Routers
    app.include_router(challenges.router, prefix="/api/v1", tags=["challenges"])
    app.include_router(pastes.router, prefix="/api/v1", tags=["pastes"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
