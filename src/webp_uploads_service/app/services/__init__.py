from .attachment_locks import AttachmentLocks
from .attachment_service import AttachmentService
from .backup_mirror import BackupMirror
from .cleanup_sweeper import CleanupSweeper
from .file_storage import FileStorageService
from .image_editor import ImageEditService
from .metadata_reconciler import MetadataReconciler
from .metadata_store import MetadataStore
from .reference_rewriter import ReferenceRewriter
from .source_generation import SourceGenerator

__all__ = [
    "AttachmentLocks",
    "AttachmentService",
    "BackupMirror",
    "CleanupSweeper",
    "FileStorageService",
    "ImageEditService",
    "MetadataReconciler",
    "MetadataStore",
    "ReferenceRewriter",
    "SourceGenerator",
]
