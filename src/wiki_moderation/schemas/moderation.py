# src/wiki_moderation/schemas/moderation.py
"""Moderation-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ModerationEntryResponse(BaseModel):
    """Schema for a queued change as shown to moderators."""

    id: int
    timestamp: datetime
    type: str
    user_id: int
    user_text: str
    namespace: int
    title: str
    page2_namespace: int
    page2_title: str
    comment: str
    minor: bool
    bot: bool
    new: bool
    ip: str | None
    header_ua: str | None
    old_len: int
    new_len: int
    rejected: bool
    rejected_by_user_text: str | None
    rejected_auto: bool
    conflict: bool
    merged_revid: int
    tags: str | None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> str:
        # A claimed entry (merged_revid < 0) is still pending to the outside.
        if self.merged_revid > 0:
            return "approved"
        if self.rejected:
            return "rejected"
        return "pending"

    model_config = ConfigDict(from_attributes=True)


class ModerationEntryDetail(ModerationEntryResponse):
    """A queued change including its full text."""

    text: str


class ApproveResponse(BaseModel):
    entry_id: int
    revision_id: int


class BatchRequest(BaseModel):
    """Schema for actions on several entries at once."""

    ids: list[int] = Field(..., min_length=1, max_length=500)


class BatchResponse(BaseModel):
    succeeded: dict[int, int] = Field(default_factory=dict, description="Entry id -> revision id")
    failed: dict[int, str] = Field(default_factory=dict, description="Entry id -> error code")


class AuthorActionRequest(BaseModel):
    """Schema for approve-all / reject-all requests."""

    author: str = Field(..., min_length=1, max_length=255)
    namespace: int | None = Field(None, description="Only changes to this page (with title)")
    title: str | None = None


class RejectCountResponse(BaseModel):
    rejected: int


class MergeRequest(BaseModel):
    text: str = Field(..., description="Hand-merged page text")


class BlockRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=255, description="User name or IP")


class BlockResponse(BaseModel):
    address: str
    changed: bool


class PendingTimeResponse(BaseModel):
    pending_since: datetime | None
