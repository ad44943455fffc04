import asyncio
import re
from pathlib import Path

from image_encoders import CapabilityRegistry, EncoderBackend, resize_dimensions
from loguru import logger

from ..core.config import Settings
from ..schemas.metadata import ImageMetadata, SizeNode
from .domain import GeneratedSource, SizeDescriptor
from .errors import (
    InvalidImageDimensions,
    InvalidMetadata,
    InvalidMimeType,
    MimeTypeNotSupported,
    NoEditor,
    OriginalFileNotFound,
)
from .metadata_store import MetadataStore

SCALED_SUFFIX = re.compile(r"-scaled$")


def derivative_filename(stem: str, width: int, height: int, extension: str) -> str:
    """``{stem}-{W}x{H}.{ext}``, dropping a trailing ``-scaled`` from the stem."""
    stem = SCALED_SUFFIX.sub("", stem)
    return f"{stem}-{width}x{height}.{extension}"


def exact_size(size: SizeDescriptor) -> SizeDescriptor:
    """
    Match recorded dimensions exactly. A centred crop absorbs the rounding
    difference between the original's aspect ratio and the recorded one.
    """
    return SizeDescriptor(width=size.width, height=size.height, crop=True)


def full_size_destination(metadata: ImageMetadata, attachment_dir: Path, extension: str) -> Path:
    """Destination of a full-size source: the attached file with another extension."""
    stem = Path(metadata.file).stem
    return attachment_dir / f"{stem}.{extension}"


class SourceGenerator:
    def __init__(
        self,
        metadata_store: MetadataStore,
        capability_registry: CapabilityRegistry,
        settings: Settings,
    ):
        self.metadata_store = metadata_store
        self.capability_registry = capability_registry
        self.settings = settings

    async def generate_source(
        self,
        attachment_id: str,
        size: SizeDescriptor | dict,
        mime_type: str,
        destination: str | Path | None = None,
    ) -> GeneratedSource:
        """
        Encode one rendition of the attachment's original at the given size.

        Writes exactly one file, overwriting whatever was at that path, and
        returns its name relative to the attachment directory and its size.
        """
        if isinstance(size, dict):
            size = SizeDescriptor.from_dict(size)

        original_path = await self.metadata_store.resolve_original_path(attachment_id)
        if original_path is None:
            raise OriginalFileNotFound(
                f"The original file of attachment {attachment_id} does not exist"
            )

        if not self.settings.is_allowed_mime(mime_type):
            raise InvalidMimeType(f"The mime type {mime_type} is not a valid mime type")

        if not self.capability_registry.has_backends():
            raise NoEditor("No image editor backend is available")

        backend = self.capability_registry.get_backend(mime_type)
        if backend is None:
            raise MimeTypeNotSupported(
                f"The mime type {mime_type} is not supported by any image editor"
            )

        if not size.is_valid:
            raise InvalidImageDimensions(
                f"Image dimensions must be positive numbers, got {size.width}x{size.height}"
            )

        extension = self.settings.extension_for_mime(mime_type)
        directory = original_path.parent
        if destination is not None:
            destination = Path(destination)
            target_path = destination.with_suffix(f".{extension}")
        else:
            target_path = None

        width, height, target_path = await asyncio.to_thread(
            self._encode,
            backend,
            original_path,
            size,
            mime_type,
            extension,
            target_path,
        )

        filesize = target_path.stat().st_size
        try:
            relative = target_path.relative_to(directory).as_posix()
        except ValueError:
            relative = target_path.name

        logger.debug(
            f"Generated {mime_type} source {relative} ({width}x{height}, {filesize} bytes) "
            f"for attachment {attachment_id}"
        )
        return GeneratedSource(
            file=relative,
            filesize=filesize,
            width=width,
            height=height,
            mime_type=mime_type,
        )

    def _encode(
        self,
        backend: EncoderBackend,
        original_path: Path,
        size: SizeDescriptor,
        mime_type: str,
        extension: str,
        target_path: Path | None,
    ) -> tuple[int, int, Path]:
        image = backend.load(original_path)
        resized = backend.resize(image, int(size.width), int(size.height), size.crop)

        if target_path is None:
            target_path = original_path.parent / derivative_filename(
                original_path.stem, resized.width, resized.height, extension
            )

        try:
            backend.save(resized, target_path, mime_type, self.settings.IMAGE_QUALITY)
        except Exception:
            # Never leave a half-written derivative behind
            target_path.unlink(missing_ok=True)
            raise

        return resized.width, resized.height, target_path

    async def generate_size(
        self, attachment_id: str, size_name: str, mime_type: str
    ) -> GeneratedSource:
        """Generate a rendition of one registered size as recorded in the metadata."""
        attachment = await self.metadata_store.find_attachment(attachment_id)
        raw_metadata = attachment.metadata if attachment is not None else None
        sizes = raw_metadata.get("sizes") if isinstance(raw_metadata, dict) else None

        if not isinstance(sizes, dict):
            raise InvalidMetadata(
                f"Attachment {attachment_id} has no valid sizes in its metadata"
            )

        node = sizes.get(size_name)
        if not isinstance(node, dict):
            raise InvalidMetadata(
                f"The image size {size_name} does not exist in the metadata of "
                f"attachment {attachment_id}"
            )

        size = SizeDescriptor.from_dict(node)
        if not size.is_valid:
            raise InvalidMetadata(
                f"The image size {size_name} of attachment {attachment_id} "
                f"has no valid dimensions"
            )

        return await self.generate_source(attachment_id, exact_size(size), mime_type)

    async def generate_native_sizes(
        self, image_path: Path, mime_type: str
    ) -> dict[str, SizeNode]:
        """
        Generate every registered size the image is large enough for, in its
        own format, next to ``image_path``.
        """
        backend = self.capability_registry.get_backend(mime_type)
        if backend is None:
            raise MimeTypeNotSupported(
                f"The mime type {mime_type} is not supported by any image editor"
            )

        sizes = await asyncio.to_thread(
            self._encode_native_sizes, backend, Path(image_path), mime_type
        )
        logger.info(f"Generated {len(sizes)} native sizes for {Path(image_path).name}")
        return sizes

    def _encode_native_sizes(
        self, backend: EncoderBackend, image_path: Path, mime_type: str
    ) -> dict[str, SizeNode]:
        image = backend.load(image_path)
        extension = image_path.suffix.lstrip(".")

        sizes = {}
        try:
            self._encode_each_size(backend, image, image_path, mime_type, extension, sizes)
        except Exception:
            # Sizes written before the failure go too
            for node in sizes.values():
                (image_path.parent / node.file).unlink(missing_ok=True)
            raise
        return sizes

    def _encode_each_size(
        self,
        backend: EncoderBackend,
        image,
        image_path: Path,
        mime_type: str,
        extension: str,
        sizes: dict[str, SizeNode],
    ) -> None:
        for size_name, registered in self.settings.IMAGE_SIZES.items():
            width = int(registered.get("width") or 0)
            height = int(registered.get("height") or 0)
            crop = bool(registered.get("crop", False))
            if width <= 0 and height <= 0:
                continue

            box = resize_dimensions(image.width, image.height, width, height, crop)
            if box is None:
                continue

            resized = backend.resize(image, width, height, crop)
            target_path = image_path.parent / derivative_filename(
                image_path.stem, resized.width, resized.height, extension
            )
            try:
                filesize = backend.save(
                    resized, target_path, mime_type, self.settings.IMAGE_QUALITY
                )
            except Exception:
                target_path.unlink(missing_ok=True)
                raise

            sizes[size_name] = SizeNode(
                file=target_path.name,
                width=resized.width,
                height=resized.height,
                mime_type=mime_type,
                filesize=filesize,
            )
