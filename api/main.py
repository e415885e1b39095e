import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.config import settings
from api.dependencies import close_forwarder, get_session
from api.models import ErrorResponse, HealthResponse
from api.routes import jobs, session
from core.adapters import adapter_factory
from core.errors import PayloadTooLarge, StateConflict
from core.session import MigrationSession

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting job migration proxy")
    migration = get_session()
    logger.info(
        f"Session {migration.id}: source={migration.source} state={migration.state.value} "
        f"split={migration.percentage}% -> {settings.target_url}"
    )

    yield

    # Shutdown
    logger.info("Shutting down job migration proxy")
    await close_forwarder()


# Create FastAPI app
app = FastAPI(
    title="Job Migration Proxy",
    description="Split live legacy job traffic between a legacy queue and the target job system",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(mode="json"),
    )


@app.exception_handler(StateConflict)
async def state_conflict_handler(request, exc: StateConflict):
    logger.warning(f"Rejected transition: {exc}")
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(error="State conflict", detail=str(exc)).model_dump(mode="json"),
    )


@app.exception_handler(PayloadTooLarge)
async def payload_too_large_handler(request, exc: PayloadTooLarge):
    return JSONResponse(
        status_code=413,
        content=ErrorResponse(error="Payload too large", detail=str(exc)).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal server error", detail="An unexpected error occurred"
        ).model_dump(mode="json"),
    )


# Include routers
app.include_router(jobs.router, tags=["jobs"])
app.include_router(session.router, tags=["session"])


@app.get("/health", response_model=HealthResponse)
async def health_check(migration: MigrationSession = Depends(get_session)):
    """
    Health check endpoint.

    Reports the proxy as up together with the session state and split.
    """
    return HealthResponse(
        state=migration.state.value,
        percentage=migration.percentage,
        supported_sources=adapter_factory.get_supported_sources(),
    )


@app.get("/")
async def root():
    """
    Root endpoint with basic API information.
    """
    return {
        "name": "Job Migration Proxy",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "status": "/status",
    }


def run_server():
    """Entry point for running the server via CLI."""
    uvicorn.run(
        "api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
