"""
Webmail Compose Backend - Main Application Entry Point

Message composition and delivery: compose sessions and their
attachments, MIME assembly, sending, sent-mail filing and drafts.

Notes:
- Binds to 127.0.0.1 only (no external access)
- All compose endpoints require bearer token authentication
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import auth, compose
from compose.exceptions import ComposeError
from config import settings
from storage.database import close_db, init_database

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    logger.info("Binding to %s:%d (localhost only)", settings.host, settings.port)

    await init_database()
    logger.info("Database initialized at %s", settings.db_path)

    yield

    await close_db()
    logger.info("Shutting down %s", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Webmail message composition and delivery API",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ComposeError, compose.compose_error_handler)

app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(compose.router, prefix="/api/v1/compose", tags=["Compose"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
