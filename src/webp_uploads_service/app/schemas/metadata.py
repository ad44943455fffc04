"""
Typed image metadata tree.

Every node keeps unknown keys (``extra="allow"``) so fields added by other
host components survive a load/save round trip. ``sources`` is ``None`` when
absent; it is never stored as an empty mapping.
"""

from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SourceRecord(BaseModel):
    """One mime-specific rendition of a size: a file next to the original."""

    model_config = ConfigDict(extra="allow")

    file: str
    filesize: int


class SizeNode(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    file: str
    width: int
    height: int
    mime_type: str | None = Field(default=None, alias="mime-type")
    filesize: int | None = None
    sources: dict[str, SourceRecord] | None = None

    def referenced_files(self) -> set[str]:
        return referenced_files(self.file, self.sources)


class ImageMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    file: str = Field(..., description="Attached file relative to the uploads dir")
    width: int
    height: int
    filesize: int | None = None
    original_image: str | None = Field(
        default=None, description="Basename of the unscaled original, if scaled"
    )
    sizes: dict[str, SizeNode | None] = Field(default_factory=dict)
    sources: dict[str, SourceRecord] | None = None

    @property
    def basename(self) -> str:
        return PurePosixPath(self.file).name

    def referenced_files(self) -> set[str]:
        """Basenames of every file the live tree points at."""
        files = referenced_files(self.basename, self.sources)
        if self.original_image:
            files.add(self.original_image)
        for node in self.sizes.values():
            if node is not None:
                files |= node.referenced_files()
        return files

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class BackupEntry(BaseModel):
    """Snapshot of one size taken before a destructive edit."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    file: str
    width: int
    height: int
    mime_type: str | None = Field(default=None, alias="mime-type")
    original_image: str | None = None
    sources: dict[str, SourceRecord] | None = None

    def referenced_files(self) -> set[str]:
        files = referenced_files(self.file, self.sources)
        if self.original_image:
            files.add(self.original_image)
        return files

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def referenced_files(
    file: str | None, sources: dict[str, SourceRecord] | None
) -> set[str]:
    """All basenames a node points at: its own file plus every source file."""
    files = set()
    if file:
        files.add(file)
    for record in (sources or {}).values():
        files.add(record.file)
    return files
