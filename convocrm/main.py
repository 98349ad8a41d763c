"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from convocrm.api.middleware import RequestContextMiddleware
from convocrm.api.routes import api_router
from convocrm.core.errors import ConfigurationError, TransientUpstreamError
from convocrm.infrastructure.redis import redis_client
from convocrm.logging_config import setup_logging
from convocrm.settings import settings

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup; the query cache falls back to memory when Redis is down
    await redis_client.connect()
    yield
    # Shutdown
    await redis_client.disconnect()


# Create FastAPI app
app = FastAPI(
    title="ConvoCRM API",
    description="Customer conversation CRM bridging a chat channel and a partner workflow platform",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextMiddleware)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.exception_handler(TransientUpstreamError)
async def upstream_error_handler(request: Request, exc: TransientUpstreamError) -> JSONResponse:
    """Upstream outages that escaped a route become 502s."""
    logger.warning(f"Upstream failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error(f"Missing configuration on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "ConvoCRM API",
        "version": "0.1.0",
        "docs": "/docs",
    }
