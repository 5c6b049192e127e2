import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .auth.router import router as auth_router
from .config import settings
from .db import Base, SessionLocal, engine
from .logging import RequestIdMiddleware, setup_logging
from .routes.admin import router as admin_router
from .routes.cleaner import router as cleaner_router
from .routes.cleaning_routes import router as cleaning_routes_router
from .routes.manager import router as manager_router
from .services.scheduler import DailyTaskScheduler


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(cleaner_router)
    app.include_router(cleaning_routes_router)
    app.include_router(manager_router)

    # Uploaded photos
    os.makedirs(settings.uploads_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.uploads_dir), name="uploads")

    @app.get("/api/health")
    def health():
        return {"status": "ok", "service": "feedbackatm-backend"}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    scheduler = DailyTaskScheduler(SessionLocal)

    @app.on_event("startup")
    def _startup():
        logger.info("startup")
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        if settings.enable_scheduler:
            scheduler.start()

    @app.on_event("shutdown")
    def _shutdown():
        if settings.enable_scheduler:
            scheduler.stop()

    return app


app = create_app()
