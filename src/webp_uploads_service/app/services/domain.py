from dataclasses import dataclass
from typing import Any, Callable, Protocol

from ..schemas.metadata import SourceRecord

TransformFilter = Callable[[dict[str, list[str]]], dict[str, list[str]]]


@dataclass(frozen=True)
class SizeDescriptor:
    width: Any
    height: Any
    crop: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SizeDescriptor":
        data = data or {}
        return cls(
            width=data.get("width"),
            height=data.get("height"),
            crop=bool(data.get("crop", False)),
        )

    @property
    def is_valid(self) -> bool:
        for value in (self.width, self.height):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
            if value <= 0:
                return False
        return True


@dataclass(frozen=True)
class GeneratedSource:
    file: str
    filesize: int
    width: int
    height: int
    mime_type: str

    def as_source(self) -> SourceRecord:
        return SourceRecord(file=self.file, filesize=self.filesize)


class TransformConfigProvider(Protocol):
    def get_transforms(self) -> dict[str, list[str]]: ...

    def targets_for(self, mime_type: str) -> list[str]: ...


class StaticTransformConfigProvider:
    """
    Transform configuration backed by a fixed mapping, adjustable through
    filters the same way a host plugin would filter it.
    """

    def __init__(self, transforms: dict[str, list[str]] | None = None):
        self._transforms = {
            mime: list(targets) for mime, targets in (transforms or {}).items()
        }
        self._filters: list[TransformFilter] = []

    def add_filter(self, transform_filter: TransformFilter) -> None:
        self._filters.append(transform_filter)

    def remove_all_filters(self) -> None:
        self._filters = []

    def get_transforms(self) -> dict[str, list[str]]:
        transforms = {mime: list(targets) for mime, targets in self._transforms.items()}
        for transform_filter in self._filters:
            transforms = transform_filter(transforms)
            if not isinstance(transforms, dict):
                transforms = {}

        valid = {}
        for mime, targets in transforms.items():
            if not isinstance(targets, (list, tuple)):
                continue
            # Ordered and de-duplicated
            valid[mime] = list(dict.fromkeys(t for t in targets if isinstance(t, str)))
        return valid

    def targets_for(self, mime_type: str) -> list[str]:
        return self.get_transforms().get(mime_type, [])


@dataclass(frozen=True)
class DeletionResult:
    attachment_id: str
    deleted: bool
    status: str
    files_removed: int = 0
