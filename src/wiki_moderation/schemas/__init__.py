# src/wiki_moderation/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .moderation import (
    ApproveResponse,
    AuthorActionRequest,
    BatchRequest,
    BatchResponse,
    BlockRequest,
    BlockResponse,
    MergeRequest,
    ModerationEntryDetail,
    ModerationEntryResponse,
    PendingTimeResponse,
    RejectCountResponse,
)
from .page import (
    EditRequest,
    MoveRequestBody,
    PageResponse,
    QueuedResponse,
    RevisionResponse,
    SaveResponse,
    UploadRequestBody,
)

__all__ = [
    "ApproveResponse", "AuthorActionRequest", "BatchRequest", "BatchResponse",
    "BlockRequest", "BlockResponse", "MergeRequest",
    "ModerationEntryDetail", "ModerationEntryResponse",
    "PendingTimeResponse", "RejectCountResponse",
    "EditRequest", "MoveRequestBody", "PageResponse", "QueuedResponse",
    "RevisionResponse", "SaveResponse", "UploadRequestBody",
]
