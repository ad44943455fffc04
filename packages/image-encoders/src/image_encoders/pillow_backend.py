from pathlib import Path

from PIL import Image, ImageOps

from .dimensions import resize_dimensions
from .types import EditOperation, EncoderBackend, OperationType

LOSSY_FORMATS = frozenset({"JPEG", "WEBP"})


def pillow_format_for_mime(mime_type: str) -> str | None:
    """Find a Pillow format name that can write the given mime type."""
    Image.init()
    for image_format, registered_mime in Image.MIME.items():
        if registered_mime == mime_type and image_format in Image.SAVE:
            return image_format
    return None


class PillowEncoderBackend(EncoderBackend):
    def __init__(self, mime_types: set[str] | None = None):
        # Optional allow-list on top of what Pillow itself can write
        self._mime_types = frozenset(mime_types) if mime_types is not None else None

    def get_name(self) -> str:
        return "pillow"

    def supports_mime_type(self, mime_type: str) -> bool:
        if self._mime_types is not None and mime_type not in self._mime_types:
            return False
        return pillow_format_for_mime(mime_type) is not None

    def load(self, path: Path) -> Image.Image:
        with Image.open(path) as img:
            img.load()
            return ImageOps.exif_transpose(img)

    def resize(
        self, image: Image.Image, width: int, height: int, crop: bool = False
    ) -> Image.Image:
        box = resize_dimensions(image.width, image.height, width, height, crop)
        if box is None:
            return image.copy()

        return image.resize(
            (box.dst_width, box.dst_height),
            Image.Resampling.LANCZOS,
            box=box.crop_box,
        )

    def apply_operations(
        self, image: Image.Image, operations: list[EditOperation]
    ) -> Image.Image:
        result = image
        for operation in operations:
            result = self._apply_operation(result, operation)
        return result

    def _apply_operation(
        self, image: Image.Image, operation: EditOperation
    ) -> Image.Image:
        if operation.type == OperationType.ROTATE:
            if operation.angle % 90 != 0:
                raise ValueError(f"Rotation must be a multiple of 90, got {operation.angle}")
            # Pillow rotates counter-clockwise
            return image.rotate(-operation.angle, expand=True)

        if operation.type == OperationType.FLIP:
            if operation.horizontal:
                image = ImageOps.mirror(image)
            if operation.vertical:
                image = ImageOps.flip(image)
            return image

        if operation.width <= 0 or operation.height <= 0:
            raise ValueError("Crop width and height must be positive")
        if (
            operation.x < 0
            or operation.y < 0
            or operation.x + operation.width > image.width
            or operation.y + operation.height > image.height
        ):
            raise ValueError("Crop rectangle is outside the image")
        return image.crop(
            (
                operation.x,
                operation.y,
                operation.x + operation.width,
                operation.y + operation.height,
            )
        )

    def save(
        self, image: Image.Image, path: Path, mime_type: str, quality: int = 82
    ) -> int:
        image_format = pillow_format_for_mime(mime_type)
        if image_format is None or not self.supports_mime_type(mime_type):
            raise ValueError(f"Unsupported mime type: {mime_type}")

        if image_format == "JPEG" and image.mode not in ("RGB", "L", "CMYK"):
            image = image.convert("RGB")

        params = {}
        if image_format in LOSSY_FORMATS:
            params["quality"] = quality

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        image.save(path, format=image_format, **params)
        return path.stat().st_size
