from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware, structlog
from .models import models  # noqa: F401  (registers tables on Base.metadata)
from .auth.router import router as auth_router
from .routes.jobs import router as jobs_router
from .routes.workers import router as workers_router
from .routes.notifications import router as notifications_router
from .services.errors import ShiftboardError, ConcurrentUpdate


logger = structlog.get_logger(__name__)


def _error_response(exc: ShiftboardError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


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

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(ShiftboardError)
    async def shiftboard_error_handler(request: Request, exc: ShiftboardError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return _error_response(exc)

    # Lost update detected during an autoflush, before the service reached its commit
    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError):
        logger.warning("job_concurrent_update", path=request.url.path)
        return _error_response(ConcurrentUpdate())

    # Routers
    app.include_router(auth_router)
    app.include_router(jobs_router)
    app.include_router(workers_router)
    app.include_router(notifications_router)

    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def on_startup():
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("database_tables_ensured", url=engine.url.render_as_string(hide_password=True))

    return app


app = create_app()
