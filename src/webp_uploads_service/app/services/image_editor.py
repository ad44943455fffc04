import asyncio
from pathlib import Path

from image_encoders import CapabilityRegistry, EditOperation, EncoderBackend
from loguru import logger

from ..core.config import Settings
from ..schemas.metadata import ImageMetadata
from .attachment_locks import AttachmentLocks
from .backup_mirror import BackupMirror, edited_stem, new_edit_suffix
from .errors import InvalidMetadata, MimeTypeNotSupported
from .file_storage import FileStorageService
from .metadata_store import MetadataStore
from .source_generation import SourceGenerator


class ImageEditService:
    """Destructive edits of an attachment's image, backed up before they happen."""

    def __init__(
        self,
        metadata_store: MetadataStore,
        file_storage: FileStorageService,
        capability_registry: CapabilityRegistry,
        source_generator: SourceGenerator,
        backup_mirror: BackupMirror,
        locks: AttachmentLocks,
        settings: Settings,
    ):
        self.metadata_store = metadata_store
        self.file_storage = file_storage
        self.capability_registry = capability_registry
        self.source_generator = source_generator
        self.backup_mirror = backup_mirror
        self.locks = locks
        self.settings = settings

    async def edit(
        self, attachment_id: str, operations: list[EditOperation | dict]
    ) -> ImageMetadata:
        operations = [
            op if isinstance(op, EditOperation) else EditOperation.from_dict(op)
            for op in operations
        ]
        if not operations:
            raise ValueError("At least one edit operation is required")

        async with self.locks.get(attachment_id):
            attachment = await self.metadata_store.get_attachment(attachment_id)
            metadata = self.metadata_store.parse_metadata(attachment)
            if metadata is None:
                raise InvalidMetadata(f"Attachment {attachment_id} has no metadata")

            mime_type = attachment.mime_type
            backend = self.capability_registry.get_backend(mime_type)
            if backend is None:
                raise MimeTypeNotSupported(
                    f"The mime type {mime_type} is not supported by any image editor"
                )

            logger.info(
                f"Editing attachment {attachment_id} with {len(operations)} operations"
            )

            current_path = self.file_storage.absolute_path(metadata.file)
            target_path = current_path.with_name(
                f"{edited_stem(current_path.stem, new_edit_suffix())}{current_path.suffix}"
            )

            # Validate the operations before anything is backed up
            edited = await asyncio.to_thread(
                self._apply, backend, current_path, operations
            )

            try:
                filesize = await asyncio.to_thread(
                    backend.save,
                    edited,
                    target_path,
                    mime_type,
                    self.settings.IMAGE_QUALITY,
                )
                sizes = await self.source_generator.generate_native_sizes(
                    target_path, mime_type
                )
            except Exception:
                self.file_storage.delete_file(target_path)
                raise

            # Backups are only written once the edited files exist
            displaced = await self.backup_mirror.before_edit(attachment_id)

            edited_metadata = ImageMetadata(
                file=self.file_storage.relative_path(target_path),
                width=edited.width,
                height=edited.height,
                filesize=filesize,
                sizes=sizes,
                **(metadata.model_extra or {}),
            )
            await self.metadata_store.set_metadata(attachment_id, edited_metadata)

            result = await self.backup_mirror.after_edit(attachment_id, displaced)
            logger.info(f"Saved edit of attachment {attachment_id} as {result.file}")
            return result

    def _apply(
        self, backend: EncoderBackend, path: Path, operations: list[EditOperation]
    ):
        image = backend.load(path)
        return backend.apply_operations(image, operations)
