"""FastAPI application entry point."""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers import auth, bookmarks, health
from core.config import get_settings
from core.redis import RedisClient, set_redis_client
from services.exceptions import ServiceError


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: ARG001
    """Configure logging and manage the Redis connection used by the change feed."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    redis_client = RedisClient(
        settings.redis_url,
        enabled=settings.redis_enabled,
        max_connections=settings.redis_max_connections,
        max_subscribers=settings.redis_max_subscribers,
    )
    await redis_client.connect()
    set_redis_client(redis_client)
    try:
        yield
    finally:
        await redis_client.close()
        set_redis_client(None)


app = FastAPI(
    title="Smart Bookmarks API",
    description="Personal bookmark management with real-time sync across sessions.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:  # noqa: ARG001
    """Translate service-layer errors to `{"error": ...}` responses."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    """
    Report invalid input as 400 with the first error's message.

    A body that is not valid JSON is a server-side failure to read the request,
    reported as a generic 500 rather than a validation error.
    """
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        logger.warning("malformed_request_body", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"error": "Server error"})
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


app.include_router(health.router)
app.include_router(auth.router)
app.include_router(bookmarks.router)
