"""
FastAPI application entry point for the Panels change tracking API.

Tenant and user identity are supplied by the calling layer on every
request (tenantId / userId).
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from panels import __version__
from panels.api.routes import panel_changes
from panels.api.routes import view_notifications
from panels.config.change_tracking import get_change_tracking_config
from panels.services.errors import PanelsError

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Panels change tracking API")

    config = get_change_tracking_config()
    app.state.database_configured = bool(os.getenv("DATABASE_URL"))
    if not app.state.database_configured:
        logger.warning(
            "DATABASE_URL not set. Endpoints will return 503 until it is configured."
        )
    logger.info("Change tracking configuration", extra={"config": config.get_all()})

    yield

    # Shutdown
    logger.info("Shutting down Panels change tracking API")


# Create FastAPI app
app = FastAPI(
    title="Panels Change Tracking API",
    description="Structural change history of Panels and notifications for published Views",
    version=__version__,
    lifespan=lifespan
)

cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(panel_changes.router)
app.include_router(view_notifications.router)


@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok", "version": __version__}


@app.exception_handler(PanelsError)
async def panels_error_handler(request: Request, exc: PanelsError):
    """Map domain errors that escaped a route to their HTTP status."""
    logger.warning(
        "Unhandled domain error",
        extra={
            "error": exc.message,
            "error_type": type(exc).__name__,
            "path": request.url.path,
        },
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "panels.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
