# src/wiki_moderation/main.py
"""Main entry point for the moderation service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from wiki_moderation.api.v1 import moderation_router, pages_router
from wiki_moderation.core.settings import settings

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Moderation queue for wiki edits, uploads and page moves",
    version=settings.app_version,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(pages_router, prefix="/api/v1")
app.include_router(moderation_router, prefix="/api/v1")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("wiki_moderation.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
