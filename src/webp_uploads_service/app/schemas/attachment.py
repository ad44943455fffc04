from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class SourceDetails(BaseModel):
    """A source record as exposed over the API, with its public URL"""

    file: str = Field(..., description="Filename relative to the attachment directory")
    filesize: int = Field(..., description="File size in bytes")
    source_url: str = Field(..., description="Public URL of the file")


class SizeDetails(BaseModel):
    file: str = Field(..., description="Filename of this size")
    width: int = Field(..., description="Width in pixels")
    height: int = Field(..., description="Height in pixels")
    mime_type: str | None = Field(None, description="Native mime type of this size")
    source_url: str = Field(..., description="Public URL of the size file")
    sources: dict[str, SourceDetails] | None = Field(
        None, description="Alternate-format renditions keyed by mime type"
    )


class MediaDetails(BaseModel):
    file: str = Field(..., description="Attached file relative to the uploads dir")
    width: int = Field(..., description="Width in pixels")
    height: int = Field(..., description="Height in pixels")
    filesize: int | None = Field(None, description="File size in bytes")
    sizes: dict[str, SizeDetails] = Field(
        default_factory=dict, description="Registered sizes, including 'full'"
    )
    sources: dict[str, SourceDetails] | None = Field(
        None, description="Alternate-format renditions of the full size"
    )


class AttachmentResponse(BaseModel):
    id: UUID = Field(..., description="Attachment identifier")
    original_filename: str = Field(..., description="Original filename")
    mime_type: str = Field(..., description="Native mime type")
    status: str = Field(..., description="Attachment status (inherit, trash)")
    source_url: str = Field(..., description="Public URL of the attached file")
    media_details: MediaDetails = Field(..., description="Sizes and sources")
    created_at: datetime = Field(..., description="When the attachment was uploaded")


class EditRequest(BaseModel):
    """Request model for an image edit"""

    operations: list[dict[str, Any]] = Field(
        ..., min_length=1, description="Ordered edit operations (rotate, flip, crop)"
    )


class DeleteResponse(BaseModel):
    id: UUID = Field(..., description="Attachment identifier")
    deleted: bool = Field(..., description="True when removed permanently")
    status: str = Field(..., description="Resulting status (trash, deleted)")
    files_removed: int = Field(0, description="Number of files removed from disk")


class ContentRewriteRequest(BaseModel):
    content: str = Field(..., description="HTML fragment to rewrite")
    attachment_id: UUID | None = Field(
        None, description="Restrict rewriting to images of this attachment"
    )


class ContentRewriteResponse(BaseModel):
    content: str = Field(..., description="Rewritten HTML fragment")

