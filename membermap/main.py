from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import uuid

import structlog

# Local imports
from membermap.core.config import settings
from membermap.logging import configure_logging
from membermap.middleware.logging import LoggingMiddleware
from membermap.api.routes import router as api_router
from membermap.services.geocoding import GeocodingClient
from membermap.services.location_picker import PickerRegistry
from membermap.services.profile_store import ProfileStore
from membermap.services.redis_client import InMemoryRedis, create_redis

configure_logging()
logger = structlog.get_logger(__name__)

# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_startup", version=settings.VERSION, env=settings.ENV)

    if settings.ENABLE_REDIS:
        redis_client = create_redis()
        backend = "redis"
    else:
        redis_client = InMemoryRedis()
        backend = "memory"
    app.state.profile_store = ProfileStore(redis_client)
    app.state.geocoder = GeocodingClient()
    app.state.pickers = PickerRegistry()
    logger.info(
        "services_initialized",
        store_backend=backend,
        amap_enabled=bool(settings.AMAP_SERVER_KEY),
    )

    yield

    logger.info("application_shutdown")
    app.state.pickers.close()
    await app.state.geocoder.aclose()
    await redis_client.aclose()

# --- FastAPI Application Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.BRIEF_DESCRIPTION,
    lifespan=lifespan,
)

# --- Middleware ---
app.add_middleware(LoggingMiddleware)

# --- API Routes ---
app.include_router(api_router, prefix="/api")

# --- Health Check Endpoint ---
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    store_ok = await request.app.state.profile_store.ping()
    return {
        "status": "ok",
        "store": "ok" if store_ok else "unavailable",
    }

# --- Global Exception Handler (for unhandled errors) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.error("unhandled_exception", error_id=error_id, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": {
                "error": "INTERNAL_SERVER_ERROR",
                "detail": "An unexpected error occurred. Please report this error ID.",
                "error_id": error_id
            }
        }
    )
