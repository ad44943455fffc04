import re
import threading
import time
from pathlib import Path

from loguru import logger

from ..schemas.metadata import BackupEntry, ImageMetadata, SizeNode
from .file_storage import FileStorageService
from .metadata_reconciler import FULL_SIZE, MetadataReconciler
from .metadata_store import MetadataStore

ORIGINAL_SUFFIX = "-orig"
EDIT_SUFFIX = re.compile(r"-e\d{13}$")

_suffix_lock = threading.Lock()
_last_suffix = 0


def new_edit_suffix() -> str:
    """
    ``e`` plus a 13-digit millisecond clock value that never repeats within
    the process, even for edits inside the same millisecond.
    """
    global _last_suffix
    with _suffix_lock:
        value = max(int(time.time() * 1000), _last_suffix + 1)
        _last_suffix = value
    return f"e{value:013d}"


def edited_stem(stem: str, suffix: str) -> str:
    """Replace a previous edit suffix on a filename stem with a new one."""
    return f"{EDIT_SUFFIX.sub('', stem)}-{suffix}"


def backup_key(size_name: str, suffix: str | None = None) -> str:
    if suffix is None:
        return f"{size_name}{ORIGINAL_SUFFIX}"
    return f"{size_name}-{suffix}"


def is_original_key(key: str) -> bool:
    return key.endswith(ORIGINAL_SUFFIX)


def size_name_from_key(key: str) -> str:
    if is_original_key(key):
        return key[: -len(ORIGINAL_SUFFIX)]
    return EDIT_SUFFIX.sub("", key)


class BackupMirror:
    """
    Mirrors each size's metadata, ``sources`` included, into backup entries
    before a destructive edit so the edit can be reverted.

    Without overwrite the first snapshot of a size lands in ``<size>-orig``
    and every later one in a new ``<size>-e<suffix>`` entry. With overwrite
    ``<size>-orig`` is the only slot: each snapshot replaces it and the
    replaced entry's files are removed once nothing references them.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        reconciler: MetadataReconciler,
        file_storage: FileStorageService,
        overwrite: bool = False,
    ):
        self.metadata_store = metadata_store
        self.reconciler = reconciler
        self.file_storage = file_storage
        self.overwrite = overwrite

    def snapshot(
        self, metadata: ImageMetadata, backups: dict[str, BackupEntry]
    ) -> tuple[dict[str, BackupEntry], list[BackupEntry]]:
        backups = dict(backups)
        displaced: list[BackupEntry] = []

        nodes: list[tuple[str, BackupEntry]] = [
            (FULL_SIZE, self._entry_for_full(metadata))
        ]
        for size_name, node in metadata.sizes.items():
            if node is not None:
                nodes.append((size_name, self._entry_for_size(node)))

        suffix = None
        for size_name, entry in nodes:
            original_key = backup_key(size_name)

            if original_key not in backups:
                backups[original_key] = entry
                continue

            if self.overwrite:
                displaced.append(backups[original_key])
                backups[original_key] = entry
                continue

            # One suffix per snapshot, bumped if it is already taken
            if suffix is None:
                suffix = new_edit_suffix()
                while any(key.endswith(f"-{suffix}") for key in backups):
                    suffix = new_edit_suffix()
            backups[backup_key(size_name, suffix)] = entry

        return backups, displaced

    def _entry_for_full(self, metadata: ImageMetadata) -> BackupEntry:
        return BackupEntry(
            file=Path(metadata.file).name,
            width=metadata.width,
            height=metadata.height,
            original_image=metadata.original_image,
            sources=self._copy_sources(metadata.sources),
        )

    def _entry_for_size(self, node: SizeNode) -> BackupEntry:
        return BackupEntry(
            file=node.file,
            width=node.width,
            height=node.height,
            mime_type=node.mime_type,
            sources=self._copy_sources(node.sources),
        )

    def _copy_sources(self, sources):
        if sources is None:
            return None
        return {mime: record.model_copy(deep=True) for mime, record in sources.items()}

    async def before_edit(self, attachment_id: str) -> list[BackupEntry]:
        """Snapshot the current tree into the backups; returns displaced entries."""
        metadata = await self.metadata_store.get_metadata(attachment_id)
        if metadata is None:
            return []

        backups = await self.metadata_store.get_backup_sizes(attachment_id)
        backups, displaced = self.snapshot(metadata, backups)
        await self.metadata_store.set_backup_sizes(attachment_id, backups)

        logger.info(
            f"Backed up {len(metadata.sizes) + 1} sizes of attachment {attachment_id} "
            f"({'overwrite' if self.overwrite else 'history'} mode)"
        )
        return displaced

    async def after_edit(
        self, attachment_id: str, displaced: list[BackupEntry] | None = None
    ) -> ImageMetadata:
        metadata = await self.reconciler.reconcile(attachment_id)

        if displaced:
            await self._purge_displaced(attachment_id, metadata, displaced)

        return metadata

    async def _purge_displaced(
        self,
        attachment_id: str,
        metadata: ImageMetadata,
        displaced: list[BackupEntry],
    ) -> None:
        backups = await self.metadata_store.get_backup_sizes(attachment_id)

        still_referenced = metadata.referenced_files()
        for entry in backups.values():
            still_referenced |= entry.referenced_files()

        stale = set()
        for entry in displaced:
            stale |= entry.referenced_files()
        stale -= still_referenced

        attachment_dir = self.file_storage.attachment_dir(metadata.file)
        deleted = await self.file_storage.delete_files(
            [attachment_dir / name for name in sorted(stale)]
        )
        logger.info(
            f"Removed {len(deleted)} files displaced by the edit of attachment {attachment_id}"
        )
