from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


def get_project_root() -> Path:
    current_path = Path(__file__).parent
    while current_path != current_path.parent:
        if (current_path / "pyproject.toml").exists():
            return current_path
        current_path = current_path.parent
    return Path(".")


DEFAULT_MIME_TYPES = {
    "jpg|jpeg|jpe": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "tif|tiff": "image/tiff",
}

DEFAULT_IMAGE_SIZES = {
    "thumbnail": {"width": 150, "height": 150, "crop": True},
    "medium": {"width": 300, "height": 300, "crop": False},
    "medium_large": {"width": 768, "height": 768, "crop": False},
    "large": {"width": 1024, "height": 1024, "crop": False},
    "1536x1536": {"width": 1536, "height": 1536, "crop": False},
    "2048x2048": {"width": 2048, "height": 2048, "crop": False},
}

DEFAULT_MIME_TRANSFORMS = {
    "image/jpeg": ["image/jpeg", "image/webp"],
    "image/webp": ["image/webp", "image/jpeg"],
}


class Settings(BaseSettings):
    # Application Settings
    APP_NAME: str = Field(default="WebP Uploads Service")
    DEBUG: bool = Field(default=False)
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8003)

    # CORS Settings
    ALLOWED_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"]
    )

    # DB Settings
    DATABASE_URL: str = Field(default="sqlite:///./storage/databases/webp_uploads.db")

    # Storage Settings
    UPLOADS_DIR: str = Field(default="./storage/uploads")
    UPLOADS_URL: str = Field(default="http://localhost:8003/uploads")
    UPLOADS_USE_YEAR_MONTH_FOLDERS: bool = Field(default=True)
    MAX_FILE_SIZE: int = Field(default=100 * 1024 * 1024)  # 100MB

    # Image Settings
    MIME_TYPES: dict[str, str] = Field(default=DEFAULT_MIME_TYPES)
    IMAGE_SIZES: dict[str, dict] = Field(default=DEFAULT_IMAGE_SIZES)
    BIG_IMAGE_SIZE_THRESHOLD: int | None = Field(default=2560)
    MIME_TRANSFORMS: dict[str, list[str]] = Field(default=DEFAULT_MIME_TRANSFORMS)
    CONTENT_IMAGE_MIMES: list[str] = Field(default=["image/webp", "image/jpeg"])
    IMAGE_QUALITY: int = Field(default=82)

    # Editing and Deletion Settings
    IMAGE_EDIT_OVERWRITE: bool = Field(default=False)
    EMPTY_TRASH_DAYS: int = Field(default=30)

    # Logging Settings
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="./logs/webp_uploads.log")

    model_config = {
        "env_file": get_project_root() / ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }

    @property
    def absolute_database_url(self) -> str:
        """Get absolute database URL based on project root."""
        if self.DATABASE_URL.startswith("sqlite:///./"):
            relative_path = self.DATABASE_URL.replace("sqlite:///./", "")
            absolute_path = get_project_root() / relative_path
            return f"sqlite:///{absolute_path}"
        return self.DATABASE_URL

    @property
    def absolute_uploads_dir(self) -> str:
        """Get absolute path for the uploads directory."""
        uploads_dir = Path(self.UPLOADS_DIR)
        if uploads_dir.is_absolute():
            return str(uploads_dir)
        return str(get_project_root() / uploads_dir)

    @property
    def absolute_log_file(self) -> str:
        log_file = Path(self.LOG_FILE)
        if log_file.is_absolute():
            return str(log_file)
        return str(get_project_root() / log_file)

    def extension_for_mime(self, mime_type: str) -> str | None:
        """First registered extension for a mime type, e.g. "jpg" for image/jpeg."""
        for extensions, registered_mime in self.MIME_TYPES.items():
            if registered_mime == mime_type:
                return extensions.split("|")[0]
        return None

    def mime_for_extension(self, extension: str) -> str | None:
        extension = extension.lower().lstrip(".")
        for extensions, registered_mime in self.MIME_TYPES.items():
            if extension in extensions.split("|"):
                return registered_mime
        return None

    def is_allowed_mime(self, mime_type: str) -> bool:
        return mime_type in self.MIME_TYPES.values()


@lru_cache()
def get_settings() -> Settings:
    return Settings()
