"""
MEL Guard - Main FastAPI Application
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Error taxonomy mapped to HTTP status codes; reconcile
                      scheduler started from the lifespan
v1.0.0 (2026-09-28): Initial FastAPI application
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import asyncio
import logging

from melguard.config import settings, init_directories
from melguard.errors import (
    MelGuardError, NotFoundError, ReconcileError, TransientExternalError, ValidationError,
)
from melguard.api import alerts, mel
from melguard.services import alert_reconciler

init_directories()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(f'{settings.LOGS_DIR}/api.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


# Background tasks
background_tasks = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Initialize database
    from melguard.models import init_db
    await init_db()

    # Reconcile scheduler
    if settings.RECONCILE_INTERVAL_S > 0:
        scheduler_task = asyncio.create_task(alert_reconciler.start_scheduler())
        background_tasks.add(scheduler_task)
        logger.info("Reconcile scheduler started")
    else:
        logger.info("Reconcile scheduler disabled (RECONCILE_INTERVAL_S=0)")

    yield

    # Shutdown
    logger.info("Shutting down services...")

    for task in background_tasks:
        task.cancel()

    await asyncio.gather(*background_tasks, return_exceptions=True)
    background_tasks.clear()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Minimum Equipment List monitoring and alerting for hospital sectors",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(mel.router, prefix="/api/mel", tags=["MEL"])
app.include_router(alerts.router, prefix="/api/mel", tags=["MEL Alerts"])


# =============================================================================
# Error Handlers
# =============================================================================

def _status_for(exc: MelGuardError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, TransientExternalError):
        return 503
    return 500


@app.exception_handler(MelGuardError)
async def mel_guard_exception_handler(request: Request, exc: MelGuardError):
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    content = {"error": True, **exc.to_dict()}
    if isinstance(exc, ReconcileError):
        content["phase"] = exc.phase
        content["alerts_unchanged"] = True
    return JSONResponse(status_code=status_code, content=content)


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "app": settings.APP_NAME,
        "mock": settings.USE_MOCK,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "melguard.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        workers=settings.API_WORKERS
    )
