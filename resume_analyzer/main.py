from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI

from resume_analyzer.middleware.error_handlers import ExceptionHandlerMiddleware, RequestTimingMiddleware
from resume_analyzer.models.settings import get_settings
from resume_analyzer.routers import cvs
from resume_analyzer.utils.logging_config import configure_for_environment, get_logger

# Configure logging first
configure_for_environment()
logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager"""
    settings = get_settings()
    logger.info(f"Resume Analyzer API starting up (store backend: {settings.store_backend})")

    if settings.store_backend == "mongo":
        try:
            from resume_analyzer.services.db import init_indexes
            await init_indexes()
        except Exception as e:
            logger.warning(f"Database index initialization had issues: {e}")
            logger.info("Application will continue - search may be slower without indexes")

    yield

    logger.info("Resume Analyzer API shutting down...")


app = FastAPI(title="Resume Analyzer API", version=VERSION, lifespan=lifespan)

# Exception handler should be the outermost middleware (added last)
app.add_middleware(RequestTimingMiddleware, slow_request_threshold=2.0)
app.add_middleware(ExceptionHandlerMiddleware)


@app.get("/")
@app.head("/")
async def root():
    """Root endpoint - handles both GET and HEAD requests for health checks"""
    return {"message": "Welcome to the Resume Analyzer API", "version": VERSION, "status": "ok"}


@app.get("/health")
@app.head("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


app.include_router(cvs.router, prefix="/api/cvs", tags=["cvs"])

logger.info("Resume Analyzer API initialized successfully")
