from .attachment import (
    AttachmentResponse,
    ContentRewriteRequest,
    ContentRewriteResponse,
    DeleteResponse,
    EditRequest,
    MediaDetails,
    SizeDetails,
    SourceDetails,
)
from .metadata import BackupEntry, ImageMetadata, SizeNode, SourceRecord

__all__ = [
    "AttachmentResponse",
    "BackupEntry",
    "ContentRewriteRequest",
    "ContentRewriteResponse",
    "DeleteResponse",
    "EditRequest",
    "ImageMetadata",
    "MediaDetails",
    "SizeDetails",
    "SizeNode",
    "SourceDetails",
    "SourceRecord",
]
