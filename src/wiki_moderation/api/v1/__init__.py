# src/wiki_moderation/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import moderation_router, pages_router

__all__ = [
    "moderation_router",
    "pages_router",
]
