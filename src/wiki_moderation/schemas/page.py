# src/wiki_moderation/schemas/page.py
"""Page-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EditRequest(BaseModel):
    """Schema for saving a page."""

    namespace: int = Field(0, ge=0)
    title: str = Field(..., min_length=1, max_length=255)
    text: str
    comment: str = Field("", max_length=500)
    minor: bool = False
    section: str | None = Field(None, description="Section number, or 'new' to append one")
    base_revision_id: int | None = Field(None, description="Revision the edit is based on")
    watch: bool | None = None
    tags: list[str] = Field(default_factory=list)
    content_model: str | None = None


class MoveRequestBody(BaseModel):
    """Schema for renaming a page."""

    namespace: int = Field(0, ge=0)
    title: str = Field(..., min_length=1, max_length=255)
    new_namespace: int = Field(0, ge=0)
    new_title: str = Field(..., min_length=1, max_length=255)
    comment: str = Field("", max_length=500)
    leave_redirect: bool = True


class UploadRequestBody(BaseModel):
    """Schema for uploading a file; the content is sent base64-encoded."""

    filename: str = Field(..., min_length=1, max_length=255)
    data_base64: str = Field(..., min_length=1)
    comment: str = Field("", max_length=500)
    description: str = ""
    watch: bool | None = None
    tags: list[str] = Field(default_factory=list)


class SaveResponse(BaseModel):
    status: str = "saved"
    revision_id: int | None
    new_page: bool = False


class QueuedResponse(BaseModel):
    """Returned with HTTP 202 when a change awaits moderation."""

    status: str = "queued"
    entry_id: int
    code: str


class PageResponse(BaseModel):
    namespace: int
    title: str
    latest: int
    content_model: str
    is_redirect: bool
    text: str


class RevisionResponse(BaseModel):
    id: int
    parent_id: int
    timestamp: datetime
    user_id: int
    user_text: str
    comment: str
    minor: bool
    size: int

    model_config = ConfigDict(from_attributes=True)
