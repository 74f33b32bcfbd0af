# Top imports
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import sentry_sdk
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from imagevault.config import settings
from imagevault.core.middleware import ErrorEnvelopeMiddleware
from imagevault.db import close_db, init_db
from imagevault.errors import (
    ImageError,
    MalformedHash,
    NotFound,
    SourceFetchError,
    StorageError,
    UnsupportedMediaType,
    UnsupportedOrCorruptImage,
    ValidationError,
)
from imagevault.routers import router
from imagevault.services.images import ImageService
from imagevault.services.metrics import metrics_endpoint, metrics_middleware
from imagevault.services.source import SourceFetcher
from imagevault.services.storage import build_storage
from imagevault.services.store import build_store

# Logging setup
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Initialize Sentry if DSN is provided
if settings.SENTRY_DSN:
    sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=0.1, environment=settings.APP_ENV)


def build_image_service() -> ImageService:
    return ImageService(
        store=build_store(settings.STORE_DRIVER),
        storage=build_storage(settings.STORAGE_DRIVER, settings.STORAGE_DIR),
        fetcher=SourceFetcher(timeout=settings.SOURCE_FETCH_TIMEOUT),
        hydrate_batch_size=settings.HYDRATE_BATCH_SIZE,
        max_limit=settings.SIMILAR_MAX_LIMIT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logging.info("Starting ImageVault (store=%s, storage=%s)", settings.STORE_DRIVER, settings.STORAGE_DRIVER)
    if settings.STORE_DRIVER == "tortoise":
        await init_db()
    if getattr(app.state, "image_service", None) is None:
        app.state.image_service = build_image_service()

    yield

    # Shutdown
    logging.info("Shutting down ImageVault...")
    if settings.STORE_DRIVER == "tortoise":
        await close_db()
        logging.info("Database connections closed")


def _error_body(request: Request, exc: Exception, **extra) -> dict:
    return {"error": str(exc), "type": type(exc).__name__, "path": request.url.path, **extra}


def _image_error_body(request: Request, exc: ImageError) -> dict:
    extra = {}
    if exc.image is not None:
        extra["image"] = exc.image.model_dump(mode="json")
    return _error_body(request, exc, **extra)


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content=_error_body(request, exc))

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content=_error_body(request, exc, problems=exc.problems))

    @app.exception_handler(MalformedHash)
    async def malformed_hash_handler(request: Request, exc: MalformedHash):
        return JSONResponse(status_code=400, content=_error_body(request, exc))

    @app.exception_handler(UnsupportedOrCorruptImage)
    @app.exception_handler(UnsupportedMediaType)
    async def unprocessable_handler(request: Request, exc: ImageError):
        return JSONResponse(status_code=422, content=_image_error_body(request, exc))

    @app.exception_handler(SourceFetchError)
    @app.exception_handler(StorageError)
    async def bad_gateway_handler(request: Request, exc: ImageError):
        return JSONResponse(status_code=502, content=_image_error_body(request, exc))


def create_app() -> FastAPI:
    app = FastAPI(
        title="ImageVault API",
        description="Image metadata, perceptual hashing and near-duplicate search",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    # Middleware setup
    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(ErrorEnvelopeMiddleware)

    # Enable Prometheus metrics if METRICS_ENABLED=1
    if settings.METRICS_ENABLED:
        metrics_middleware(app)
        app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("imagevault.main:app", host="0.0.0.0", port=8000, reload=settings.APP_ENV == "development")
