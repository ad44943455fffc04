import io
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw
from tortoise import Tortoise

from src.webp_uploads_service.app.api.public import router as public_router
from src.webp_uploads_service.app.core.config import Settings
from src.webp_uploads_service.app.core.dependencies import (
    ServiceContainer,
    get_attachment_service,
    get_file_storage,
    get_image_editor,
    get_reference_rewriter,
    get_settings_dependency,
    override_container_for_testing,
    restore_container,
)
from src.webp_uploads_service.app.db.database import MODEL_MODULES
from src.webp_uploads_service.app.models import AttachmentStatus
from src.webp_uploads_service.app.schemas import MediaDetails
from src.webp_uploads_service.app.services.attachment_service import AttachmentService
from src.webp_uploads_service.app.services.image_editor import ImageEditService
from src.webp_uploads_service.app.services.reference_rewriter import (
    ReferenceRewriter,
)


def _make_image(width: int, height: int, mode: str = "RGB") -> Image.Image:
    """A gradient with a few shapes so encoders produce realistic file sizes."""
    image = Image.new(mode, (width, height))
    draw = ImageDraw.Draw(image)
    for x in range(0, width, 8):
        shade = int(255 * x / width)
        fill = (shade, 120, 255 - shade) if mode == "RGB" else (shade, 120, 255 - shade, 255)
        draw.rectangle([x, 0, x + 8, height], fill=fill)
    draw.ellipse([width // 4, height // 4, width // 2, height // 2], fill="white")
    return image


def _encode(image: Image.Image, image_format: str) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def temp_storage_dir():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def settings(temp_storage_dir):
    return Settings(
        UPLOADS_DIR=str(Path(temp_storage_dir) / "uploads"),
        UPLOADS_URL="http://testserver/uploads",
        UPLOADS_USE_YEAR_MONTH_FOLDERS=False,
        LOG_FILE="",
    )


@pytest.fixture
def uploads_dir(settings) -> Path:
    path = Path(settings.absolute_uploads_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": MODEL_MODULES},
    )
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def test_container(settings):
    """Create a fresh service container for each test."""
    container = ServiceContainer(settings)
    override_container_for_testing(container)
    yield container
    restore_container()


@pytest.fixture
def jpeg_bytes():
    return _encode(_make_image(1080, 720), "JPEG")


@pytest.fixture
def webp_bytes():
    return _encode(_make_image(1080, 720), "WEBP")


@pytest.fixture
def png_bytes():
    return _encode(_make_image(640, 480, "RGBA"), "PNG")


@pytest.fixture
def small_jpeg_bytes():
    return _encode(_make_image(100, 80), "JPEG")


@pytest.fixture
async def jpeg_attachment(db, test_container, jpeg_bytes):
    return await test_container.attachment_service.upload(jpeg_bytes, "leafs.jpg")


@pytest.fixture
async def webp_attachment(db, test_container, webp_bytes):
    return await test_container.attachment_service.upload(webp_bytes, "balloons.webp")


@pytest.fixture
async def png_attachment(db, test_container, png_bytes):
    return await test_container.attachment_service.upload(png_bytes, "dice.png")


@pytest.fixture
def mock_attachment_service():
    mock = Mock(spec=AttachmentService)
    mock.upload = AsyncMock()
    mock.get_attachment = AsyncMock()
    mock.get_media_details = AsyncMock(
        return_value=MediaDetails(file="leafs.jpg", width=1080, height=720)
    )
    mock.delete = AsyncMock()
    mock.restore = AsyncMock()
    return mock


@pytest.fixture
def mock_image_editor():
    mock = Mock(spec=ImageEditService)
    mock.edit = AsyncMock()
    return mock


@pytest.fixture
def mock_reference_rewriter():
    mock = Mock(spec=ReferenceRewriter)
    mock.rewrite_references = AsyncMock(side_effect=lambda content, attachment_id: content)
    return mock


@pytest.fixture
def mock_attachment_record():
    return SimpleNamespace(
        id=uuid.uuid4(),
        original_filename="leafs.jpg",
        file="leafs.jpg",
        mime_type="image/jpeg",
        status=AttachmentStatus.INHERIT,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def test_client(
    test_container,
    mock_attachment_service,
    mock_image_editor,
    mock_reference_rewriter,
):
    app = FastAPI()

    app.dependency_overrides[get_settings_dependency] = lambda: test_container.settings
    app.dependency_overrides[get_file_storage] = lambda: test_container.file_storage
    app.dependency_overrides[get_attachment_service] = lambda: mock_attachment_service
    app.dependency_overrides[get_image_editor] = lambda: mock_image_editor
    app.dependency_overrides[get_reference_rewriter] = lambda: mock_reference_rewriter

    app.include_router(public_router, prefix="/api")

    return TestClient(app)
