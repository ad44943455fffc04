import asyncio
import re

import pytest
from image_encoders import EditOperation, PillowEncoderBackend
from PIL import Image

from src.webp_uploads_service.app.models import Attachment


class TestEdit:
    async def test_rotate_saves_suffixed_file(self, jpeg_attachment, test_container, uploads_dir):
        metadata = await test_container.image_editor.edit(
            str(jpeg_attachment.id), [EditOperation.rotate(90)]
        )

        assert re.fullmatch(r"leafs-e\d{13}\.jpg", metadata.file)
        assert (metadata.width, metadata.height) == (720, 1080)
        with Image.open(uploads_dir / metadata.file) as img:
            assert img.size == (720, 1080)

    async def test_edited_image_gets_fresh_sources(
        self, jpeg_attachment, test_container, uploads_dir
    ):
        metadata = await test_container.image_editor.edit(
            str(jpeg_attachment.id), [{"type": "crop", "x": 0, "y": 0, "width": 600, "height": 600}]
        )

        stem = metadata.file.rsplit(".", 1)[0]
        assert metadata.sources["image/jpeg"].file == metadata.file
        assert metadata.sources["image/webp"].file == f"{stem}.webp"
        assert metadata.sizes["medium"].file == f"{stem}-300x300.jpg"
        assert metadata.sizes["medium"].sources["image/webp"].file == f"{stem}-300x300.webp"
        assert (uploads_dir / f"{stem}-300x300.webp").exists()

    async def test_edit_clears_original_image(
        self, db, settings, test_container, jpeg_bytes
    ):
        settings.BIG_IMAGE_SIZE_THRESHOLD = 1000
        attachment = await test_container.attachment_service.upload(jpeg_bytes, "leafs.jpg")

        metadata = await test_container.image_editor.edit(
            str(attachment.id), [{"type": "flip", "horizontal": True}]
        )

        assert metadata.original_image is None
        assert metadata.file.startswith("leafs-scaled-e")

    async def test_second_edit_replaces_the_suffix(self, jpeg_attachment, test_container):
        attachment_id = str(jpeg_attachment.id)
        first = await test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)])
        second = await test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)])

        assert re.fullmatch(r"leafs-e\d{13}\.jpg", second.file)
        assert second.file != first.file

    async def test_invalid_operation_changes_nothing(
        self, jpeg_attachment, test_container, uploads_dir
    ):
        before = {path.name for path in uploads_dir.iterdir()}

        with pytest.raises(ValueError):
            await test_container.image_editor.edit(
                str(jpeg_attachment.id),
                [{"type": "crop", "x": 1000, "y": 0, "width": 500, "height": 500}],
            )

        attachment = await Attachment.get(id=jpeg_attachment.id)
        assert attachment.backup_sizes is None
        assert attachment.file == "leafs.jpg"
        assert {path.name for path in uploads_dir.iterdir()} == before

    async def test_unknown_operation(self, jpeg_attachment, test_container):
        with pytest.raises(ValueError, match="Unknown edit operation"):
            await test_container.image_editor.edit(
                str(jpeg_attachment.id), [{"type": "sharpen"}]
            )

    async def test_requires_operations(self, jpeg_attachment, test_container):
        with pytest.raises(ValueError):
            await test_container.image_editor.edit(str(jpeg_attachment.id), [])

    async def test_concurrent_edits_are_serialized(self, jpeg_attachment, test_container):
        attachment_id = str(jpeg_attachment.id)

        await asyncio.gather(
            test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)]),
            test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)]),
        )

        attachment = await Attachment.get(id=attachment_id)
        assert (attachment.metadata["width"], attachment.metadata["height"]) == (1080, 720)
        edit_keys = [key for key in attachment.backup_sizes if key.startswith("full-e")]
        assert len(edit_keys) == 1


class TestFailedEdit:
    async def _fail_native_sizes(self, *args, **kwargs):
        raise OSError("disk full")

    async def test_failed_write_leaves_backups_untouched(
        self, jpeg_attachment, test_container, uploads_dir, monkeypatch
    ):
        attachment_id = str(jpeg_attachment.id)
        before = {path.name for path in uploads_dir.iterdir()}
        monkeypatch.setattr(
            test_container.source_generator, "generate_native_sizes", self._fail_native_sizes
        )

        with pytest.raises(OSError):
            await test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)])

        attachment = await Attachment.get(id=attachment_id)
        assert attachment.backup_sizes is None
        assert attachment.file == "leafs.jpg"
        assert {path.name for path in uploads_dir.iterdir()} == before

    async def test_failed_write_keeps_the_overwrite_slot(
        self, jpeg_attachment, test_container, uploads_dir, monkeypatch
    ):
        attachment_id = str(jpeg_attachment.id)
        test_container.backup_mirror.overwrite = True
        await test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)])
        backups = (await Attachment.get(id=attachment_id)).backup_sizes
        monkeypatch.setattr(
            test_container.source_generator, "generate_native_sizes", self._fail_native_sizes
        )

        with pytest.raises(OSError):
            await test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)])

        assert (await Attachment.get(id=attachment_id)).backup_sizes == backups
        assert backups["full-orig"]["file"] == "leafs.jpg"
        assert (uploads_dir / "leafs.jpg").exists()
        assert (uploads_dir / "leafs.webp").exists()

    async def test_failed_size_removes_sizes_already_written(
        self, jpeg_attachment, test_container, uploads_dir
    ):
        class FailingLargeSize(PillowEncoderBackend):
            def save(self, image, path, mime_type, quality=82):
                if image.width == 1024:
                    raise OSError("disk full")
                return super().save(image, path, mime_type, quality)

        before = {path.name for path in uploads_dir.iterdir()}
        test_container.capability_registry.set_backends([FailingLargeSize()])

        with pytest.raises(OSError):
            await test_container.image_editor.edit(
                str(jpeg_attachment.id), [EditOperation.flip(horizontal=True)]
            )

        assert {path.name for path in uploads_dir.iterdir()} == before


class TestEditKeepsHostKeys:
    async def test_extra_keys_survive_an_edit(self, jpeg_attachment, test_container):
        attachment_id = str(jpeg_attachment.id)
        metadata = dict(jpeg_attachment.metadata)
        metadata["image_meta"] = {"camera": "test"}
        await test_container.metadata_store.set_metadata(attachment_id, metadata)

        edited = await test_container.image_editor.edit(attachment_id, [EditOperation.rotate(90)])

        stored = (await Attachment.get(id=attachment_id)).metadata
        assert stored["image_meta"] == {"camera": "test"}
        assert edited.model_extra["image_meta"] == {"camera": "test"}
