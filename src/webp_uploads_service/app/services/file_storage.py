import asyncio
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

import aiofiles
from loguru import logger
from PIL import Image, ImageOps

from ..core.config import Settings, get_settings


class FileStorageService:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        Path(self.settings.absolute_uploads_dir).mkdir(parents=True, exist_ok=True)

    @property
    def uploads_dir(self) -> Path:
        return Path(self.settings.absolute_uploads_dir)

    def upload_subdir(self) -> str:
        if not self.settings.UPLOADS_USE_YEAR_MONTH_FOLDERS:
            return ""
        now = datetime.now(timezone.utc)
        return f"{now.year:04d}/{now.month:02d}"

    def absolute_path(self, relative_path: str) -> Path:
        return self.uploads_dir / relative_path

    def relative_path(self, path: Path) -> str:
        return PurePosixPath(Path(path).relative_to(self.uploads_dir)).as_posix()

    def attachment_dir(self, relative_file: str) -> Path:
        """Absolute directory holding the attached file and all its derivatives."""
        return self.absolute_path(relative_file).parent

    def url_for(self, relative_file: str, filename: str | None = None) -> str:
        """
        Public URL of a file. With ``filename`` the file is taken to live in
        the same directory as ``relative_file``.
        """
        relative = PurePosixPath(relative_file)
        if filename is not None:
            relative = relative.parent / filename
        return f"{self.settings.UPLOADS_URL.rstrip('/')}/{relative.as_posix()}"

    def unique_filename(self, directory: Path, filename: str) -> str:
        path = PurePosixPath(filename)
        stem, suffix = path.stem, path.suffix
        candidate = filename
        number = 1
        while (directory / candidate).exists():
            candidate = f"{stem}-{number}{suffix}"
            number += 1
        return candidate

    async def save_upload(self, file_data: bytes, filename: str) -> str:
        """Store uploaded bytes and return the path relative to the uploads dir."""
        subdir = self.upload_subdir()
        directory = self.uploads_dir / subdir if subdir else self.uploads_dir
        directory.mkdir(parents=True, exist_ok=True)

        safe_name = self._sanitize_filename(filename)
        target_name = self.unique_filename(directory, safe_name)
        target_path = directory / target_name

        logger.info(f"Saving upload {filename} as {target_path}")

        try:
            async with aiofiles.open(target_path, "wb") as f:
                await f.write(file_data)
        except Exception as e:
            self.delete_file(target_path)
            raise IOError(f"Failed to save upload: {str(e)}")

        return self.relative_path(target_path)

    async def inspect_image(self, relative_path: str) -> dict:
        """Detect the mime type and display dimensions of a stored image."""
        file_path = self.absolute_path(relative_path)

        try:

            def _extract_metadata():
                with Image.open(file_path) as img:
                    mime_type = Image.MIME.get(img.format or "")
                    if not mime_type or not self.settings.is_allowed_mime(mime_type):
                        raise ValueError(f"Unsupported image format: {img.format}")

                    # Dimensions as displayed, after EXIF orientation
                    transposed = ImageOps.exif_transpose(img)
                    return {
                        "mime_type": mime_type,
                        "width": transposed.width,
                        "height": transposed.height,
                        "filesize": file_path.stat().st_size,
                    }

            return await asyncio.to_thread(_extract_metadata)

        except Exception as e:
            if isinstance(e, ValueError):
                raise
            raise ValueError(f"Invalid image file: {str(e)}")

    def _sanitize_filename(self, filename: str) -> str:
        name = PurePosixPath(filename.replace("\\", "/")).name
        stem = PurePosixPath(name).stem
        suffix = PurePosixPath(name).suffix.lower()
        cleaned = "".join(c if c.isalnum() or c in "-_" else "-" for c in stem).strip("-")
        if not cleaned:
            raise ValueError(f"Invalid filename: {filename}")
        return f"{cleaned}{suffix}"

    def filesize(self, path: Path) -> int:
        return Path(path).stat().st_size

    def file_exists(self, path: Path) -> bool:
        try:
            return Path(path).is_file()
        except OSError:
            return False

    def delete_file(self, path: Path) -> bool:
        """Delete a file; an already absent file is not an error."""
        try:
            Path(path).unlink()
            logger.debug(f"Deleted file {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete {path}: {e}")
            return False

    async def delete_files(self, paths: list[Path]) -> list[Path]:
        deleted = []
        for path in paths:
            if await asyncio.to_thread(self.delete_file, path):
                deleted.append(path)
        return deleted
