# Standard library imports
import asyncio
import uuid
from contextlib import asynccontextmanager, suppress

# Third-party imports
from fastapi import FastAPI, Request, status
from fastapi.exceptions import (
    HTTPException as StarletteHTTPException,
    RequestValidationError,
)
from fastapi.middleware.cors import CORSMiddleware

# Local imports
from app.api.v1.routes.router import router as api_v1_router
from app.core.config import settings
from app.core.exceptions import AppException, public_error_code, status_code_for
from app.core.logging_config import get_logger
from app.core.response import error_response, validation_error_response
from app.db.deps import AsyncSessionLocal
from app.services.flash_cards.factory import build_orchestrator
from app.services.flash_cards.openai_http import OpenAIHttpClient
from app.services.flash_cards.reaper import reap_stale_sessions_once, run_session_reaper_task
from app.services.flash_cards.worker import GenerationQueue


# Initialize centralized logger
logger = get_logger("main")

HTTP_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "VALIDATION_ERROR",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    status.HTTP_429_TOO_MANY_REQUESTS: "QUOTA_EXCEEDED",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown operations."""
    # Startup: wire the pipeline, start workers, resolve sessions orphaned by a restart
    http = OpenAIHttpClient()
    queue = GenerationQueue(workers=settings.GENERATION_WORKERS)
    orchestrator = build_orchestrator(AsyncSessionLocal, scheduler=queue.submit, http=http)
    app.state.orchestrator = orchestrator

    try:
        await reap_stale_sessions_once(orchestrator.store)
    except Exception as e:
        logger.exception(f"Startup session sweep failed: {e}")
    queue.start(orchestrator.run_pipeline)
    reaper_task = asyncio.create_task(run_session_reaper_task(orchestrator.store))

    yield

    # Shutdown: in-flight sessions are left to the reaper of the next instance
    reaper_task.cancel()
    with suppress(asyncio.CancelledError):
        await reaper_task
    await queue.stop()
    await http.aclose()


# Initialize FastAPI
app = FastAPI(
    title="English Flash Cards Generator API",
    description="API for generating illustrated English vocabulary flash cards",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

# Include the router with prefix
app.include_router(
    api_v1_router,
    prefix="/api/v1",
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request id to every request and echo it on the response."""
    request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Translate application errors into the public error envelope"""
    status_code = status_code_for(exc)
    code = public_error_code(exc)
    if status_code >= 500:
        logger.error(
            f"Unhandled application error {exc.error_code}: {exc.message}",
            extra={"path": request.url.path, "method": request.method},
        )
        return error_response(
            "Internal server error", status_code=status_code, error_code=code,
            request_id=_request_id(request),
        )

    logger.warning(
        f"{code}: {exc.message}",
        extra={"path": request.url.path, "method": request.method, "error_code": code},
    )
    response = error_response(
        exc.message,
        status_code=status_code,
        error_code=code,
        request_id=_request_id(request),
        data=exc.details or None,
    )
    if status_code == status.HTTP_401_UNAUTHORIZED:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


# Custom exception handler
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with logging"""
    # exc.detail might be a dict or str
    msg = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    # Log the error with context
    logger.warning(
        f"HTTP Exception: {exc.status_code} - {msg}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
            "client_ip": request.client.host if request.client else None
        }
    )

    if exc.status_code >= 500:
        code = "INTERNAL_ERROR"
    else:
        code = HTTP_STATUS_CODES.get(exc.status_code, "VALIDATION_ERROR")
    response = error_response(
        msg, status_code=exc.status_code, error_code=code, request_id=_request_id(request)
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


# Pydantic validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Enhanced validation error handler with structured error details and logging"""

    # Log validation errors with context
    error_count = len(exc.errors())
    logger.warning(
        f"Validation Error: {error_count} field(s) failed validation",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_count": error_count,
        }
    )

    return validation_error_response(exc.errors(), request_id=_request_id(request), status_code=400)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        f"Unhandled error: {exc}",
        extra={"path": request.url.path, "method": request.method},
    )
    return error_response(
        "Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code="INTERNAL_ERROR",
        request_id=_request_id(request),
    )


# Add CORS middleware
logger.info(f"Configuring CORS middleware with origins: {settings.ALLOWED_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=settings.ALLOWED_METHODS,
    allow_headers=settings.ALLOWED_HEADERS,
)
logger.info("CORS middleware configured successfully")


# Run the app
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
