import asyncio
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional

from image_encoders import CapabilityRegistry, EncoderBackend
from loguru import logger

from ..core.config import Settings
from ..models import Attachment, AttachmentStatus
from ..schemas.attachment import MediaDetails, SizeDetails, SourceDetails
from ..schemas.metadata import ImageMetadata, SourceRecord
from .attachment_locks import AttachmentLocks
from .cleanup_sweeper import CleanupSweeper
from .domain import DeletionResult
from .errors import MimeTypeNotSupported
from .file_storage import FileStorageService
from .metadata_reconciler import FULL_SIZE, MetadataReconciler
from .metadata_store import MetadataStore
from .source_generation import SourceGenerator


class AttachmentService:
    def __init__(
        self,
        metadata_store: MetadataStore,
        file_storage: FileStorageService,
        capability_registry: CapabilityRegistry,
        source_generator: SourceGenerator,
        reconciler: MetadataReconciler,
        sweeper: CleanupSweeper,
        locks: AttachmentLocks,
        settings: Settings,
    ):
        self.metadata_store = metadata_store
        self.file_storage = file_storage
        self.capability_registry = capability_registry
        self.source_generator = source_generator
        self.reconciler = reconciler
        self.sweeper = sweeper
        self.locks = locks
        self.settings = settings

    async def upload(self, file_data: bytes, original_filename: str) -> Attachment:
        attachment_id = str(uuid.uuid4())
        stored_files: list[Path] = []
        attachment: Optional[Attachment] = None

        extension = PurePosixPath(original_filename).suffix
        if not extension or self.settings.mime_for_extension(extension) is None:
            raise ValueError(f"Unsupported file type: {original_filename}")

        try:
            logger.info(f"Starting upload of {original_filename} (ID: {attachment_id})")

            relative_file = await self.file_storage.save_upload(
                file_data, original_filename
            )
            original_path = self.file_storage.absolute_path(relative_file)
            stored_files.append(original_path)

            details = await self.file_storage.inspect_image(relative_file)
            mime_type = details["mime_type"]

            backend = self.capability_registry.get_backend(mime_type)
            if backend is None:
                raise MimeTypeNotSupported(
                    f"The mime type {mime_type} is not supported by any image editor"
                )

            metadata = ImageMetadata(
                file=relative_file,
                width=details["width"],
                height=details["height"],
                filesize=details["filesize"],
            )

            threshold = self.settings.BIG_IMAGE_SIZE_THRESHOLD
            if threshold and max(metadata.width, metadata.height) > threshold:
                metadata = await self._scale_big_image(
                    backend, metadata, original_path, mime_type, threshold
                )
                stored_files.append(self.file_storage.absolute_path(metadata.file))

            # Sizes come from the unscaled original, never from the -scaled copy
            metadata.sizes = await self.source_generator.generate_native_sizes(
                original_path, mime_type
            )
            stored_files.extend(
                original_path.parent / node.file for node in metadata.sizes.values()
            )

            attachment = await Attachment.create(
                id=attachment_id,
                original_filename=original_filename,
                file=metadata.file,
                mime_type=mime_type,
                metadata=metadata.to_storage(),
            )

            async with self.locks.get(attachment_id):
                await self.reconciler.reconcile(attachment_id)

            await attachment.refresh_from_db()
            logger.info(
                f"Uploaded {original_filename} as {attachment.file} (ID: {attachment_id})"
            )
            return attachment

        except Exception:
            await self._cleanup_upload(attachment_id, stored_files, attachment)
            raise

    async def _scale_big_image(
        self,
        backend: EncoderBackend,
        metadata: ImageMetadata,
        original_path: Path,
        mime_type: str,
        threshold: int,
    ) -> ImageMetadata:
        """Attach a ``-scaled`` copy capped at the threshold instead of the original."""
        scaled_path = original_path.with_name(
            f"{original_path.stem}-scaled{original_path.suffix}"
        )

        def _scale():
            image = backend.load(original_path)
            scaled = backend.resize(image, threshold, threshold)
            filesize = backend.save(
                scaled, scaled_path, mime_type, self.settings.IMAGE_QUALITY
            )
            return scaled.width, scaled.height, filesize

        width, height, filesize = await asyncio.to_thread(_scale)
        logger.info(
            f"Scaled {original_path.name} from {metadata.width}x{metadata.height} "
            f"to {width}x{height}"
        )
        return ImageMetadata(
            file=self.file_storage.relative_path(scaled_path),
            width=width,
            height=height,
            filesize=filesize,
            original_image=original_path.name,
        )

    async def _cleanup_upload(
        self,
        attachment_id: str,
        stored_files: list[Path],
        attachment: Optional[Attachment] = None,
    ):
        try:
            if attachment is not None:
                await self.sweeper.on_delete(attachment_id)
                await attachment.delete()
            await self.file_storage.delete_files(stored_files)
            self.locks.discard(attachment_id)
        except Exception as cleanup_error:
            logger.warning(
                f"Failed to cleanup for attachment {attachment_id}: {cleanup_error}"
            )

    async def delete(self, attachment_id: str, force: bool = False) -> DeletionResult:
        """
        Move the attachment to the trash, or delete it with all its files when
        forced, when trash is disabled, or when it already is in the trash.
        """
        async with self.locks.get(attachment_id):
            attachment = await self.metadata_store.get_attachment(attachment_id)

            trash_enabled = self.settings.EMPTY_TRASH_DAYS > 0
            if not force and trash_enabled and attachment.status != AttachmentStatus.TRASH:
                attachment.status = AttachmentStatus.TRASH
                await attachment.save()
                logger.info(f"Moved attachment {attachment_id} to the trash")
                return DeletionResult(
                    attachment_id=str(attachment.id),
                    deleted=False,
                    status=AttachmentStatus.TRASH.value,
                )

            deleted_files = await self.sweeper.on_delete(attachment_id)
            await attachment.delete()

        self.locks.discard(attachment_id)
        logger.info(f"Deleted attachment {attachment_id} permanently")
        return DeletionResult(
            attachment_id=str(attachment.id),
            deleted=True,
            status="deleted",
            files_removed=len(deleted_files),
        )

    async def restore(self, attachment_id: str) -> Attachment:
        """Revert every edit and bring a trashed attachment back."""
        async with self.locks.get(attachment_id):
            await self.sweeper.on_restore(attachment_id)

            attachment = await self.metadata_store.get_attachment(attachment_id)
            if attachment.status == AttachmentStatus.TRASH:
                attachment.status = AttachmentStatus.INHERIT
                await attachment.save()
            return attachment

    async def get_attachment(self, attachment_id: str) -> Attachment:
        return await self.metadata_store.get_attachment(attachment_id)

    async def get_media_details(self, attachment_id: str) -> MediaDetails:
        attachment = await self.metadata_store.get_attachment(attachment_id)
        metadata = self.metadata_store.parse_metadata(attachment)
        if metadata is None:
            return MediaDetails(file=attachment.file, width=0, height=0)

        relative_file = metadata.file
        sizes = {
            size_name: SizeDetails(
                file=node.file,
                width=node.width,
                height=node.height,
                mime_type=node.mime_type,
                source_url=self.file_storage.url_for(relative_file, node.file),
                sources=self._source_details(relative_file, node.sources),
            )
            for size_name, node in metadata.sizes.items()
            if node is not None
        }
        sizes[FULL_SIZE] = SizeDetails(
            file=metadata.basename,
            width=metadata.width,
            height=metadata.height,
            mime_type=attachment.mime_type,
            source_url=self.file_storage.url_for(relative_file),
            sources=self._source_details(relative_file, metadata.sources),
        )

        return MediaDetails(
            file=relative_file,
            width=metadata.width,
            height=metadata.height,
            filesize=metadata.filesize,
            sizes=sizes,
            sources=self._source_details(relative_file, metadata.sources),
        )

    def _source_details(
        self, relative_file: str, sources: dict[str, SourceRecord] | None
    ) -> dict[str, SourceDetails] | None:
        if not sources:
            return None
        return {
            mime_type: SourceDetails(
                file=record.file,
                filesize=record.filesize,
                source_url=self.file_storage.url_for(relative_file, record.file),
            )
            for mime_type, record in sources.items()
        }
