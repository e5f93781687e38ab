"""
Context Space AI Core - Main Application Entry Point
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.db import init_db
from app.errors import ContextSpaceError
from app.api import (
    context_spaces_router,
    feature_requests_router,
    assistant_router,
    usage_router,
)
from app.services.ai.usage import get_usage_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    logger.info(f"{settings.app_name} starting up (default provider: {settings.ai_default_provider})")
    await init_db()
    logger.info("Database initialized")

    yield

    # Let in-flight usage writes land before the loop closes
    await get_usage_service().flush()
    logger.info(f"{settings.app_name} shut down")


app = FastAPI(
    title=settings.app_name,
    description="Context spaces, feature requests and the AI assistants built on them",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ContextSpaceError)
async def context_space_error_handler(request: Request, exc: ContextSpaceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__, **exc.detail},
    )


# Include routers
app.include_router(context_spaces_router, prefix=settings.api_prefix)
app.include_router(feature_requests_router, prefix=settings.api_prefix)
app.include_router(assistant_router, prefix=settings.api_prefix)
app.include_router(usage_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "name": settings.app_name,
        "status": "healthy",
        "version": "0.1.0",
    }


@app.get("/health")
async def health():
    """Health check with a database probe"""
    db_status = "connected"
    try:
        from app.db.database import async_session_maker
        async with async_session_maker() as db:
            from sqlalchemy import text
            await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"error: {e}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "ai_provider": settings.ai_default_provider,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
