# src/wiki_moderation/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .moderation import router as moderation_router
from .pages import router as pages_router

__all__ = [
    "moderation_router",
    "pages_router",
]
