from .attachment import Attachment, AttachmentStatus

__all__ = [
    "Attachment",
    "AttachmentStatus",
]
