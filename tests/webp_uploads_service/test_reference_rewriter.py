import uuid

import pytest

from src.webp_uploads_service.app.services.reference_rewriter import (
    attachment_id_from_tag,
)


def _img_tag(attachment, filename: str, with_class: bool = True) -> str:
    class_attribute = f' class="aligncenter image-{attachment.id}"' if with_class else ""
    return (
        f'<img src="http://testserver/uploads/{filename}" width="300" height="200"'
        f'{class_attribute} alt="" />'
    )


class TestAttachmentIdFromTag:
    def test_reads_class_token(self):
        attachment_id = str(uuid.uuid4())
        tag = f'<img class="size-medium image-{attachment_id}" src="a.jpg">'
        assert attachment_id_from_tag(tag) == attachment_id

    def test_ignores_prefixed_tokens(self):
        tag = '<img class="wp-image-0" src="a.jpg">'
        assert attachment_id_from_tag(tag) is None

    def test_tag_without_class(self):
        assert attachment_id_from_tag('<img src="a.jpg">') is None


class TestImgTagUpdateMimeType:
    async def test_replaces_size_file_with_webp(self, jpeg_attachment, test_container):
        tag = _img_tag(jpeg_attachment, "leafs-300x200.jpg")

        result = await test_container.reference_rewriter.img_tag_update_mime_type(
            tag, str(jpeg_attachment.id)
        )

        assert result == tag.replace("leafs-300x200.jpg", "leafs-300x200.webp")

    async def test_replaces_every_size_and_the_full_size(self, jpeg_attachment, test_container):
        metadata = jpeg_attachment.metadata
        sizes = metadata["sizes"]
        srcset = ", ".join(
            f"http://testserver/uploads/{size['file']} {size['width']}w"
            for size in sizes.values()
        )
        tag = (
            f'<img src="http://testserver/uploads/leafs.jpg" '
            f'srcset="{srcset}, http://testserver/uploads/leafs.jpg 1080w" '
            f'class="image-{jpeg_attachment.id}">'
        )

        expected = tag
        for size in sizes.values():
            expected = expected.replace(
                size["sources"]["image/jpeg"]["file"], size["sources"]["image/webp"]["file"]
            )
        expected = expected.replace("leafs.jpg", "leafs.webp")

        result = await test_container.reference_rewriter.img_tag_update_mime_type(
            tag, str(jpeg_attachment.id)
        )

        assert result == expected
        assert "leafs.jpg" not in result
        assert ".jpg" not in result

    async def test_webp_upload_is_unchanged(self, webp_attachment, test_container):
        tag = _img_tag(webp_attachment, "balloons-300x200.webp")

        result = await test_container.reference_rewriter.img_tag_update_mime_type(
            tag, str(webp_attachment.id)
        )

        assert result == tag

    async def test_image_without_sources_is_unchanged(self, png_attachment, test_container):
        tag = _img_tag(png_attachment, "dice.png")

        result = await test_container.reference_rewriter.img_tag_update_mime_type(
            tag, str(png_attachment.id)
        )

        assert result == tag

    async def test_unknown_attachment_is_unchanged(self, db, test_container):
        tag = '<img src="leafs.jpg">'

        result = await test_container.reference_rewriter.img_tag_update_mime_type(
            tag, str(uuid.uuid4())
        )

        assert result == tag

    async def test_falls_back_to_the_next_preferred_mime(
        self, jpeg_attachment, test_container, settings
    ):
        settings.CONTENT_IMAGE_MIMES = ["image/avif", "image/jpeg"]
        tag = _img_tag(jpeg_attachment, "leafs-300x200.jpg")

        result = await test_container.reference_rewriter.img_tag_update_mime_type(
            tag, str(jpeg_attachment.id)
        )

        assert result == tag


class TestRewriteReferences:
    async def test_leaves_external_images_alone(self, db, test_container):
        paragraph = (
            '<p>Donec accumsan, sapien et <img src="https://example.org/hubble.jpg">, '
            "id commodo nisi sapien et est.</p>"
        )

        assert await test_container.reference_rewriter.rewrite_references(paragraph) == (
            paragraph
        )

    async def test_leaves_non_uuid_class_tokens_alone(self, db, test_container):
        paragraph = '<p><img class="wp-image-0" src="https://example.org/hubble.jpg"></p>'

        assert await test_container.reference_rewriter.rewrite_references(paragraph) == (
            paragraph
        )

    async def test_leaves_untagged_library_images_alone(self, jpeg_attachment, test_container):
        tag = _img_tag(jpeg_attachment, "leafs-300x200.jpg", with_class=False)

        assert await test_container.reference_rewriter.rewrite_references(tag) == tag

    async def test_leaves_unknown_attachment_ids_alone(self, db, test_container):
        tag = f'<img class="image-{uuid.uuid4()}" src="leafs-300x200.jpg">'

        assert await test_container.reference_rewriter.rewrite_references(tag) == tag

    async def test_rewrites_tagged_images_inside_content(self, jpeg_attachment, test_container):
        tag = _img_tag(jpeg_attachment, "leafs-300x200.jpg")
        content = f"<p>Before</p>{tag}<p>After leafs-300x200.jpg</p>"

        result = await test_container.reference_rewriter.rewrite_references(content)

        assert result == (
            f"<p>Before</p>{tag.replace('leafs-300x200.jpg', 'leafs-300x200.webp')}"
            "<p>After leafs-300x200.jpg</p>"
        )

    async def test_only_the_requested_attachment_is_rewritten(
        self, jpeg_attachment, test_container, jpeg_bytes
    ):
        other = await test_container.attachment_service.upload(jpeg_bytes, "car.jpg")
        first = _img_tag(jpeg_attachment, "leafs-300x200.jpg")
        second = _img_tag(other, "car-300x200.jpg")

        result = await test_container.reference_rewriter.rewrite_references(
            first + second, str(other.id)
        )

        assert result == first + second.replace("car-300x200.jpg", "car-300x200.webp")

    async def test_never_raises(self, jpeg_attachment, test_container, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("metadata store down")

        monkeypatch.setattr(test_container.metadata_store, "get_metadata", broken)
        tag = _img_tag(jpeg_attachment, "leafs-300x200.jpg")

        assert await test_container.reference_rewriter.rewrite_references(tag) == tag

    @pytest.mark.parametrize("content", ["", "plain text", "<img>", "<img src=>"])
    async def test_degenerate_content(self, db, test_container, content):
        assert await test_container.reference_rewriter.rewrite_references(content) == content
