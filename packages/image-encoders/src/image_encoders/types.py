from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from PIL import Image


class OperationType(str, Enum):
    ROTATE = "rotate"
    FLIP = "flip"
    CROP = "crop"


@dataclass(frozen=True)
class EditOperation:
    type: OperationType
    angle: int = 0  # Clockwise degrees, multiples of 90
    horizontal: bool = False
    vertical: bool = False
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @classmethod
    def rotate(cls, angle: int) -> "EditOperation":
        return cls(type=OperationType.ROTATE, angle=angle)

    @classmethod
    def flip(cls, horizontal: bool = False, vertical: bool = False) -> "EditOperation":
        return cls(type=OperationType.FLIP, horizontal=horizontal, vertical=vertical)

    @classmethod
    def crop(cls, x: int, y: int, width: int, height: int) -> "EditOperation":
        return cls(type=OperationType.CROP, x=x, y=y, width=width, height=height)

    def to_dict(self) -> dict[str, Any]:
        if self.type == OperationType.ROTATE:
            return {"type": self.type.value, "angle": self.angle}
        if self.type == OperationType.FLIP:
            return {
                "type": self.type.value,
                "horizontal": self.horizontal,
                "vertical": self.vertical,
            }
        return {
            "type": self.type.value,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EditOperation":
        try:
            operation_type = OperationType(data["type"])
        except (KeyError, ValueError):
            raise ValueError(f"Unknown edit operation: {data.get('type')}")

        if operation_type == OperationType.ROTATE:
            return cls.rotate(int(data.get("angle", 0)))
        if operation_type == OperationType.FLIP:
            return cls.flip(
                horizontal=bool(data.get("horizontal", False)),
                vertical=bool(data.get("vertical", False)),
            )
        if "width" not in data or "height" not in data:
            raise ValueError("Crop requires width and height")
        return cls.crop(
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
            width=int(data["width"]),
            height=int(data["height"]),
        )


@dataclass(frozen=True)
class ResizeBox:
    """Source crop rectangle and the output size it is scaled to."""

    src_x: int
    src_y: int
    src_width: int
    src_height: int
    dst_width: int
    dst_height: int

    @property
    def crop_box(self) -> tuple[int, int, int, int]:
        return (
            self.src_x,
            self.src_y,
            self.src_x + self.src_width,
            self.src_y + self.src_height,
        )


@runtime_checkable
class EncoderBackend(Protocol):
    @abstractmethod
    def get_name(self) -> str:
        """Get the backend name identifier."""
        ...

    @abstractmethod
    def supports_mime_type(self, mime_type: str) -> bool:
        """Whether the backend can encode images of this mime type."""
        ...

    @abstractmethod
    def load(self, path: Path) -> Image.Image: ...

    @abstractmethod
    def resize(
        self, image: Image.Image, width: int, height: int, crop: bool = False
    ) -> Image.Image: ...

    @abstractmethod
    def apply_operations(
        self, image: Image.Image, operations: list[EditOperation]
    ) -> Image.Image: ...

    @abstractmethod
    def save(
        self, image: Image.Image, path: Path, mime_type: str, quality: int = 82
    ) -> int:
        """Encode the image to the given path and return the bytes written."""
        ...
