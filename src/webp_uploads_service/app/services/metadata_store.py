from pathlib import Path

from loguru import logger
from pydantic import ValidationError
from tortoise.exceptions import DoesNotExist

from ..models import Attachment
from ..schemas.metadata import BackupEntry, ImageMetadata
from .errors import AttachmentNotFound, InvalidMetadata
from .file_storage import FileStorageService


class MetadataStore:
    """Host-persisted metadata tree and backup entries of each attachment."""

    def __init__(self, file_storage: FileStorageService):
        self.file_storage = file_storage

    async def get_attachment(self, attachment_id: str) -> Attachment:
        try:
            return await Attachment.get(id=str(attachment_id))
        except (DoesNotExist, ValueError):
            raise AttachmentNotFound(str(attachment_id))

    async def find_attachment(self, attachment_id: str) -> Attachment | None:
        try:
            return await self.get_attachment(attachment_id)
        except AttachmentNotFound:
            return None

    async def get_metadata(self, attachment_id: str) -> ImageMetadata | None:
        attachment = await self.get_attachment(attachment_id)
        return self.parse_metadata(attachment)

    def parse_metadata(self, attachment: Attachment) -> ImageMetadata | None:
        if not attachment.metadata:
            return None
        try:
            return ImageMetadata.model_validate(attachment.metadata)
        except ValidationError as e:
            logger.warning(f"Malformed metadata for attachment {attachment.id}: {e}")
            raise InvalidMetadata(f"Malformed metadata for attachment {attachment.id}")

    async def set_metadata(
        self, attachment_id: str, metadata: ImageMetadata | dict | None
    ) -> None:
        attachment = await self.get_attachment(attachment_id)
        if isinstance(metadata, ImageMetadata):
            attachment.metadata = metadata.to_storage()
            attachment.file = metadata.file
        else:
            attachment.metadata = metadata
        await attachment.save()

    async def get_backup_sizes(self, attachment_id: str) -> dict[str, BackupEntry]:
        attachment = await self.get_attachment(attachment_id)
        backups = {}
        for key, entry in (attachment.backup_sizes or {}).items():
            try:
                backups[key] = BackupEntry.model_validate(entry)
            except ValidationError:
                logger.warning(
                    f"Ignoring malformed backup entry {key} for attachment {attachment_id}"
                )
        return backups

    async def set_backup_sizes(
        self, attachment_id: str, backups: dict[str, BackupEntry]
    ) -> None:
        attachment = await self.get_attachment(attachment_id)
        attachment.backup_sizes = (
            {key: entry.to_storage() for key, entry in backups.items()} or None
        )
        await attachment.save()

    async def resolve_original_path(self, attachment_id: str) -> Path | None:
        """
        Path of the image derivatives are generated from: the unscaled original
        when the attached file is a ``-scaled`` copy, otherwise the attached file.
        """
        attachment = await self.find_attachment(attachment_id)
        if attachment is None:
            return None

        metadata = attachment.metadata or {}
        relative_file = metadata.get("file") or attachment.file
        path = self.file_storage.absolute_path(relative_file)

        original_image = metadata.get("original_image")
        if original_image:
            path = path.parent / original_image

        if not self.file_storage.file_exists(path):
            return None
        return path
