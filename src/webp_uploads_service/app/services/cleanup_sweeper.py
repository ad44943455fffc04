from pathlib import Path, PurePosixPath

from loguru import logger

from ..schemas.metadata import BackupEntry, ImageMetadata, SizeNode
from .backup_mirror import backup_key, is_original_key, size_name_from_key
from .errors import InvalidMetadata
from .file_storage import FileStorageService
from .metadata_reconciler import FULL_SIZE
from .metadata_store import MetadataStore


class CleanupSweeper:
    """
    Removes derivative files that are no longer referenced when an attachment
    is permanently deleted or restored to its pre-edit state.
    """

    def __init__(self, metadata_store: MetadataStore, file_storage: FileStorageService):
        self.metadata_store = metadata_store
        self.file_storage = file_storage

    async def on_delete(self, attachment_id: str) -> list[Path]:
        attachment = await self.metadata_store.get_attachment(attachment_id)

        try:
            metadata = self.metadata_store.parse_metadata(attachment)
        except InvalidMetadata:
            metadata = None

        relative_file = metadata.file if metadata is not None else attachment.file
        attachment_dir = self.file_storage.attachment_dir(relative_file)

        files = {PurePosixPath(relative_file).name}
        if metadata is not None:
            files |= metadata.referenced_files()

        backups = await self.metadata_store.get_backup_sizes(attachment_id)
        for entry in backups.values():
            files |= entry.referenced_files()

        deleted = await self.file_storage.delete_files(
            [attachment_dir / name for name in sorted(files)]
        )
        logger.info(
            f"Removed {len(deleted)} of {len(files)} files of attachment {attachment_id}"
        )
        return deleted

    async def on_restore(self, attachment_id: str) -> ImageMetadata | None:
        """
        Rebuild the live tree from the ``-orig`` backups and delete every file
        only the discarded edits pointed at.
        """
        metadata = await self.metadata_store.get_metadata(attachment_id)
        backups = await self.metadata_store.get_backup_sizes(attachment_id)

        full_backup = backups.get(backup_key(FULL_SIZE))
        if metadata is None or full_backup is None:
            logger.info(f"Nothing to restore for attachment {attachment_id}")
            return metadata

        restored = self._restored_tree(metadata, full_backup, backups)

        discarded = metadata.referenced_files()
        for key, entry in backups.items():
            if not is_original_key(key):
                discarded |= entry.referenced_files()
        discarded -= restored.referenced_files()

        attachment_dir = self.file_storage.attachment_dir(metadata.file)
        deleted = await self.file_storage.delete_files(
            [attachment_dir / name for name in sorted(discarded)]
        )

        await self.metadata_store.set_metadata(attachment_id, restored)
        await self.metadata_store.set_backup_sizes(attachment_id, {})

        logger.info(
            f"Restored attachment {attachment_id} to {restored.file}, "
            f"removed {len(deleted)} edited files"
        )
        return restored

    def _restored_tree(
        self,
        metadata: ImageMetadata,
        full_backup: BackupEntry,
        backups: dict[str, BackupEntry],
    ) -> ImageMetadata:
        directory = PurePosixPath(metadata.file).parent
        relative_file = (directory / full_backup.file).as_posix()

        path = self.file_storage.absolute_path(relative_file)
        filesize = (
            self.file_storage.filesize(path) if self.file_storage.file_exists(path) else None
        )

        sizes = {}
        for key, entry in backups.items():
            size_name = size_name_from_key(key)
            if not is_original_key(key) or size_name == FULL_SIZE:
                continue
            sizes[size_name] = SizeNode(
                file=entry.file,
                width=entry.width,
                height=entry.height,
                mime_type=entry.mime_type,
                sources=entry.sources,
            )

        return ImageMetadata(
            file=relative_file,
            width=full_backup.width,
            height=full_backup.height,
            filesize=filesize,
            original_image=full_backup.original_image,
            sizes=sizes,
            sources=full_backup.sources,
        )
