from typing import Optional

from image_encoders import CapabilityRegistry, PillowEncoderBackend

from ..core.config import Settings, get_settings
from ..services.attachment_locks import AttachmentLocks
from ..services.attachment_service import AttachmentService
from ..services.backup_mirror import BackupMirror
from ..services.cleanup_sweeper import CleanupSweeper
from ..services.domain import StaticTransformConfigProvider
from ..services.file_storage import FileStorageService
from ..services.image_editor import ImageEditService
from ..services.metadata_reconciler import MetadataReconciler
from ..services.metadata_store import MetadataStore
from ..services.reference_rewriter import ReferenceRewriter
from ..services.source_generation import SourceGenerator


class ServiceContainer:
    """
    Builds every service lazily and shares one instance of each. Tests swap
    individual services with the ``set_*`` methods.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings
        self._services: dict = {}

    def _get(self, name: str, factory):
        if name not in self._services:
            self._services[name] = factory()
        return self._services[name]

    def _set(self, name: str, service) -> None:
        self._services[name] = service

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def file_storage(self) -> FileStorageService:
        return self._get("file_storage", lambda: FileStorageService(self.settings))

    @property
    def capability_registry(self) -> CapabilityRegistry:
        return self._get(
            "capability_registry", lambda: CapabilityRegistry([PillowEncoderBackend()])
        )

    @property
    def transform_config(self) -> StaticTransformConfigProvider:
        return self._get(
            "transform_config",
            lambda: StaticTransformConfigProvider(self.settings.MIME_TRANSFORMS),
        )

    @property
    def locks(self) -> AttachmentLocks:
        return self._get("locks", AttachmentLocks)

    @property
    def metadata_store(self) -> MetadataStore:
        return self._get("metadata_store", lambda: MetadataStore(self.file_storage))

    @property
    def source_generator(self) -> SourceGenerator:
        return self._get(
            "source_generator",
            lambda: SourceGenerator(
                metadata_store=self.metadata_store,
                capability_registry=self.capability_registry,
                settings=self.settings,
            ),
        )

    @property
    def reconciler(self) -> MetadataReconciler:
        return self._get(
            "reconciler",
            lambda: MetadataReconciler(
                metadata_store=self.metadata_store,
                source_generator=self.source_generator,
                capability_registry=self.capability_registry,
                transform_config=self.transform_config,
                file_storage=self.file_storage,
                settings=self.settings,
            ),
        )

    @property
    def backup_mirror(self) -> BackupMirror:
        return self._get(
            "backup_mirror",
            lambda: BackupMirror(
                metadata_store=self.metadata_store,
                reconciler=self.reconciler,
                file_storage=self.file_storage,
                overwrite=self.settings.IMAGE_EDIT_OVERWRITE,
            ),
        )

    @property
    def sweeper(self) -> CleanupSweeper:
        return self._get(
            "sweeper",
            lambda: CleanupSweeper(
                metadata_store=self.metadata_store, file_storage=self.file_storage
            ),
        )

    @property
    def reference_rewriter(self) -> ReferenceRewriter:
        return self._get(
            "reference_rewriter",
            lambda: ReferenceRewriter(
                metadata_store=self.metadata_store, settings=self.settings
            ),
        )

    @property
    def image_editor(self) -> ImageEditService:
        return self._get(
            "image_editor",
            lambda: ImageEditService(
                metadata_store=self.metadata_store,
                file_storage=self.file_storage,
                capability_registry=self.capability_registry,
                source_generator=self.source_generator,
                backup_mirror=self.backup_mirror,
                locks=self.locks,
                settings=self.settings,
            ),
        )

    @property
    def attachment_service(self) -> AttachmentService:
        return self._get(
            "attachment_service",
            lambda: AttachmentService(
                metadata_store=self.metadata_store,
                file_storage=self.file_storage,
                capability_registry=self.capability_registry,
                source_generator=self.source_generator,
                reconciler=self.reconciler,
                sweeper=self.sweeper,
                locks=self.locks,
                settings=self.settings,
            ),
        )

    def set_file_storage(self, file_storage: FileStorageService) -> None:
        self._set("file_storage", file_storage)

    def set_capability_registry(self, registry: CapabilityRegistry) -> None:
        self._set("capability_registry", registry)

    def set_transform_config(self, transform_config) -> None:
        self._set("transform_config", transform_config)

    def set_attachment_service(self, attachment_service: AttachmentService) -> None:
        self._set("attachment_service", attachment_service)

    def set_image_editor(self, image_editor: ImageEditService) -> None:
        self._set("image_editor", image_editor)

    def set_reference_rewriter(self, reference_rewriter: ReferenceRewriter) -> None:
        self._set("reference_rewriter", reference_rewriter)


_container = ServiceContainer()
_default_container = _container


def get_container() -> ServiceContainer:
    return _container


def override_container_for_testing(container: ServiceContainer) -> None:
    global _container
    _container = container


def restore_container() -> None:
    global _container
    _container = _default_container


def get_settings_dependency() -> Settings:
    return get_container().settings


def get_file_storage() -> FileStorageService:
    return get_container().file_storage


def get_attachment_service() -> AttachmentService:
    return get_container().attachment_service


def get_image_editor() -> ImageEditService:
    return get_container().image_editor


def get_reference_rewriter() -> ReferenceRewriter:
    return get_container().reference_rewriter
