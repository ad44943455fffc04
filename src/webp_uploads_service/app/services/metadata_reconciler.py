import asyncio
from pathlib import Path

from image_encoders import CapabilityRegistry
from loguru import logger

from ..core.config import Settings
from ..schemas.metadata import ImageMetadata, SizeNode, SourceRecord
from .domain import SizeDescriptor, TransformConfigProvider
from .errors import ImageSourceError, InvalidMetadata
from .file_storage import FileStorageService
from .metadata_store import MetadataStore
from .source_generation import SourceGenerator, exact_size, full_size_destination

FULL_SIZE = "full"


class MetadataReconciler:
    """
    Fills the ``sources`` of the full size and every intermediate size with
    the renditions the transform configuration asks for.

    Individual failures are logged and skipped; the tree is always saved and
    returned. Callers must serialize reconciliation per attachment.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        source_generator: SourceGenerator,
        capability_registry: CapabilityRegistry,
        transform_config: TransformConfigProvider,
        file_storage: FileStorageService,
        settings: Settings,
    ):
        self.metadata_store = metadata_store
        self.source_generator = source_generator
        self.capability_registry = capability_registry
        self.transform_config = transform_config
        self.file_storage = file_storage
        self.settings = settings

    async def reconcile(self, attachment_id: str) -> ImageMetadata:
        attachment = await self.metadata_store.get_attachment(attachment_id)
        metadata = self.metadata_store.parse_metadata(attachment)
        if metadata is None:
            raise InvalidMetadata(f"Attachment {attachment_id} has no metadata")

        native_mime = attachment.mime_type
        targets = self.transform_config.targets_for(native_mime)
        attachment_dir = self.file_storage.attachment_dir(metadata.file)

        logger.info(
            f"Reconciling sources for attachment {attachment_id} "
            f"({native_mime} -> {targets or 'no transforms'})"
        )

        previous_files = metadata.referenced_files()

        metadata.sources = await self._full_size_sources(
            attachment_id, metadata, native_mime, targets, attachment_dir
        )

        size_names = list(metadata.sizes.keys())
        results = await asyncio.gather(
            *(
                self._size_sources(
                    attachment_id,
                    size_name,
                    metadata.sizes[size_name],
                    native_mime,
                    targets,
                    attachment_dir,
                )
                for size_name in size_names
            )
        )

        # Merge serially once every size has finished
        for size_name, sources in zip(size_names, results):
            node = metadata.sizes[size_name]
            if node is not None:
                node.sources = sources

        await self.metadata_store.set_metadata(attachment_id, metadata)
        await self._delete_dropped(
            attachment_id, previous_files - metadata.referenced_files(), attachment_dir
        )
        return metadata

    def _retained(
        self,
        sources: dict[str, SourceRecord] | None,
        targets: list[str],
        native_mime: str,
    ) -> dict[str, SourceRecord]:
        """Stored records still wanted by the configuration and still producible."""
        return {
            mime_type: record
            for mime_type, record in (sources or {}).items()
            if mime_type in targets
            and (mime_type == native_mime or self.capability_registry.supports(mime_type))
        }

    async def _delete_dropped(
        self, attachment_id: str, dropped: set[str], attachment_dir: Path
    ) -> None:
        if not dropped:
            return
        # Backups may still point at a dropped rendition
        for entry in (await self.metadata_store.get_backup_sizes(attachment_id)).values():
            dropped -= entry.referenced_files()
        deleted = await self.file_storage.delete_files(
            [attachment_dir / name for name in sorted(dropped)]
        )
        if deleted:
            logger.info(
                f"Removed {len(deleted)} renditions no longer configured "
                f"for attachment {attachment_id}"
            )

    async def _full_size_sources(
        self,
        attachment_id: str,
        metadata: ImageMetadata,
        native_mime: str,
        targets: list[str],
        attachment_dir: Path,
    ) -> dict[str, SourceRecord] | None:
        sources = self._retained(metadata.sources, targets, native_mime)
        attached_path = self.file_storage.absolute_path(metadata.file)

        for mime_type in targets:
            if self._has_source(sources, mime_type, attachment_dir):
                continue

            if mime_type == native_mime:
                record = self._existing_file_source(attached_path)
                if record is not None:
                    sources[mime_type] = record
                continue

            if not self._is_supported(attachment_id, FULL_SIZE, mime_type):
                continue

            extension = self.settings.extension_for_mime(mime_type)
            if extension is None:
                logger.warning(f"No file extension registered for {mime_type}")
                continue

            try:
                generated = await self.source_generator.generate_source(
                    attachment_id,
                    exact_size(
                        SizeDescriptor(width=metadata.width, height=metadata.height)
                    ),
                    mime_type,
                    full_size_destination(metadata, attachment_dir, extension),
                )
            except ImageSourceError as e:
                self._log_skip(attachment_id, FULL_SIZE, mime_type, e)
                continue

            sources[mime_type] = generated.as_source()

        return sources or None

    async def _size_sources(
        self,
        attachment_id: str,
        size_name: str,
        node: SizeNode | None,
        native_mime: str,
        targets: list[str],
        attachment_dir: Path,
    ) -> dict[str, SourceRecord] | None:
        size_mime = (node.mime_type if node is not None else None) or native_mime
        sources = (
            self._retained(node.sources, targets, size_mime) if node is not None else {}
        )

        for mime_type in targets:
            if self._has_source(sources, mime_type, attachment_dir):
                continue

            if node is not None and mime_type == size_mime:
                record = self._existing_file_source(attachment_dir / node.file)
                if record is not None:
                    sources[mime_type] = record
                continue

            if not self._is_supported(attachment_id, size_name, mime_type):
                continue

            try:
                generated = await self.source_generator.generate_size(
                    attachment_id, size_name, mime_type
                )
            except ImageSourceError as e:
                self._log_skip(attachment_id, size_name, mime_type, e)
                continue

            sources[mime_type] = generated.as_source()

        return sources or None

    def _has_source(
        self, sources: dict[str, SourceRecord], mime_type: str, attachment_dir: Path
    ) -> bool:
        record = sources.get(mime_type)
        return record is not None and self.file_storage.file_exists(
            attachment_dir / record.file
        )

    def _existing_file_source(self, path: Path) -> SourceRecord | None:
        if not self.file_storage.file_exists(path):
            logger.warning(f"Expected image file {path} is missing")
            return None
        return SourceRecord(file=path.name, filesize=self.file_storage.filesize(path))

    def _is_supported(self, attachment_id: str, size_name: str, mime_type: str) -> bool:
        if self.capability_registry.supports(mime_type):
            return True
        logger.info(
            f"Skipping {mime_type} for size {size_name} of attachment {attachment_id}: "
            f"no encoder supports it"
        )
        return False

    def _log_skip(
        self, attachment_id: str, size_name: str, mime_type: str, error: ImageSourceError
    ) -> None:
        logger.warning(
            f"Skipping {mime_type} for size {size_name} of attachment {attachment_id}: "
            f"[{error.code}] {error.message}"
        )
