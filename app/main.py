"""
Realtor360 API - AI virtual staging and listing descriptions for realtors

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import observability modules
from app.config import settings
from app.logging_config import get_logger
from app.sentry_config import configure_sentry
from app.middleware.logging import LoggingMiddleware
from app.routes.metrics import router as metrics_router

from app.database import AsyncSessionLocal
from app.exceptions import (
    AppError,
    DispatchRejected,
    InsufficientCredits,
    InvalidImage,
    InvalidTransition,
    NotFound,
)
from app.services.dispatch_service import DispatchClient
from app.services.job_runtime import JobRuntime
from app.services.mailbox import RedisMailbox

# Import route modules
from app.routes.auth import router as auth_router
from app.routes.projects import router as projects_router
from app.routes.transformations import router as transformations_router
from app.routes.descriptions import router as descriptions_router
from app.routes.credits import router as credits_router
from app.routes.webhooks import router as webhooks_router


log = get_logger(component="app")

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

ERROR_STATUS = {
    InsufficientCredits: status.HTTP_402_PAYMENT_REQUIRED,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidImage: status.HTTP_400_BAD_REQUEST,
    InvalidTransition: status.HTTP_409_CONFLICT,
    DispatchRejected: status.HTTP_502_BAD_GATEWAY,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the job runtime on startup, stop its background tasks on shutdown."""
    runtime = JobRuntime(
        session_factory=AsyncSessionLocal,
        dispatch_client=DispatchClient(),
        mailbox=RedisMailbox(redis.from_url(settings.REDIS_URL, decode_responses=True)),
    )
    app.state.runtime = runtime
    runtime.start()
    log.info("lifespan_startup", environment=settings.ENVIRONMENT)
    try:
        yield
    finally:
        await runtime.stop()
        log.info("lifespan_shutdown")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Virtual staging and listing descriptions for real estate agents, powered by n8n AI workflows",
    lifespan=lifespan,
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

# Add CORS middleware for the frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def app_error_handler(request: Request, exc: AppError):
    """Translate domain errors into HTTP responses."""
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


app.add_exception_handler(AppError, app_error_handler)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include authentication routes
app.include_router(auth_router)

# Include project and job routes
app.include_router(projects_router)
app.include_router(transformations_router)
app.include_router(descriptions_router)

# Include credit routes
app.include_router(credits_router)

# Include completion webhook routes
app.include_router(webhooks_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health(request: Request):
    """Detailed health check."""
    runtime = getattr(request.app.state, "runtime", None)
    return {
        "status": "healthy",
        "mailbox_poller": bool(runtime and runtime.poller.running),
        "staleness_sweeper": bool(runtime and runtime.sweeper.running),
    }
