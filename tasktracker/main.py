import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from tasktracker.cache.layer import ResponseCache, response_cache
from tasktracker.core.config import get_settings
from tasktracker.core.logging_setup import setup_logging
from tasktracker.database import create_db_and_tables, get_sessionmaker
from tasktracker.dependencies import get_cache
from tasktracker.errors import (
    Forbidden,
    InvalidCredentials,
    NotFound,
    StorageFailure,
    Unauthorized,
)
from tasktracker.routers import ai, auth, tasks
from tasktracker.seed import seed_demo_data

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)

    if settings.create_tables_on_startup:
        await create_db_and_tables()
    if settings.seed_demo_data:
        async with get_sessionmaker()() as session:
            await seed_demo_data(session)

    await response_cache.init_cache()
    yield
    await response_cache.close()


app = FastAPI(
    title="Task Tracker API",
    description="Multi-tenant task management API with bearer auth and per-identity caching",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(auth.router)
app.include_router(tasks.router)
app.include_router(ai.router)


def _error(status_code: int, detail: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized):
    return _error(
        status.HTTP_401_UNAUTHORIZED, str(exc), headers={"WWW-Authenticate": "Bearer"}
    )


@app.exception_handler(InvalidCredentials)
async def invalid_credentials_handler(request: Request, exc: InvalidCredentials):
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(status.HTTP_404_NOT_FOUND, str(exc))


@app.exception_handler(Forbidden)
async def forbidden_handler(request: Request, exc: Forbidden):
    return _error(status.HTTP_403_FORBIDDEN, str(exc))


@app.exception_handler(StorageFailure)
async def storage_failure_handler(request: Request, exc: StorageFailure):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Storage temporarily unavailable")


@app.get("/")
async def root():
    return {
        "message": "Welcome to Task Tracker API",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/health/cache")
async def cache_health(cache: ResponseCache = Depends(get_cache)):
    return cache.get_stats()
