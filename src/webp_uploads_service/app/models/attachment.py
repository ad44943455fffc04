from enum import Enum

from tortoise import fields
from tortoise.models import Model


class AttachmentStatus(str, Enum):
    """Lifecycle status of an attachment record."""

    INHERIT = "inherit"
    TRASH = "trash"


class Attachment(Model):
    id = fields.UUIDField(primary_key=True)
    original_filename = fields.CharField(
        max_length=255, description="Original filename as uploaded by user"
    )
    file = fields.CharField(
        max_length=500, description="Path of the attached file relative to the uploads dir"
    )
    mime_type = fields.CharField(max_length=100, description="Native mime type")
    status = fields.CharEnumField(AttachmentStatus, default=AttachmentStatus.INHERIT)
    metadata = fields.JSONField(
        null=True, description="Image metadata tree: sizes, sources and extra fields"
    )
    backup_sizes = fields.JSONField(
        null=True, description="Backup entries keyed by <size>-orig or <size>-e<suffix>"
    )

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "attachments"

    def __str__(self) -> str:
        return f"<Attachment(id={self.id}, file='{self.file}', mime='{self.mime_type}')>"
