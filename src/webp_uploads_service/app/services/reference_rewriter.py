import re
from uuid import UUID

from loguru import logger

from ..core.config import Settings
from ..schemas.metadata import ImageMetadata
from .errors import ImageSourceError
from .metadata_store import MetadataStore

IMG_TAG = re.compile(r"<img\s[^>]*>", re.IGNORECASE)
CLASS_ATTRIBUTE = re.compile(r"""\bclass\s*=\s*(["'])(.*?)\1""", re.IGNORECASE | re.DOTALL)
ATTACHMENT_CLASS = re.compile(r"(?:^|\s)image-([0-9a-fA-F-]{36})(?=\s|$)")


def attachment_id_from_tag(tag: str) -> str | None:
    """Attachment id carried by the ``image-<uuid>`` class token of an img tag."""
    class_match = CLASS_ATTRIBUTE.search(tag)
    if class_match is None:
        return None

    token = ATTACHMENT_CLASS.search(class_match.group(2))
    if token is None:
        return None

    try:
        return str(UUID(token.group(1)))
    except ValueError:
        return None


class ReferenceRewriter:
    """Points ``<img>`` tags in HTML content at a preferred alternate format."""

    def __init__(self, metadata_store: MetadataStore, settings: Settings):
        self.metadata_store = metadata_store
        self.settings = settings

    def target_mime(self, metadata: ImageMetadata) -> str | None:
        for mime_type in self.settings.CONTENT_IMAGE_MIMES:
            if metadata.sources and mime_type in metadata.sources:
                return mime_type
        return None

    async def img_tag_update_mime_type(self, tag: str, attachment_id: str) -> str:
        """Swap every file of the attachment found in ``tag`` for its preferred-format rendition."""
        try:
            metadata = await self.metadata_store.get_metadata(attachment_id)
        except (LookupError, ImageSourceError) as e:
            logger.debug(f"Leaving img tag for attachment {attachment_id} unchanged: {e}")
            return tag

        if metadata is None:
            return tag

        mime_type = self.target_mime(metadata)
        if mime_type is None:
            return tag

        original_name = metadata.basename
        replacement = metadata.sources[mime_type].file
        if replacement != original_name:
            tag = tag.replace(original_name, replacement)

        for node in metadata.sizes.values():
            if node is None or not node.sources or mime_type not in node.sources:
                continue
            replacement = node.sources[mime_type].file
            if replacement != node.file:
                tag = tag.replace(node.file, replacement)

        return tag

    async def rewrite_references(
        self, content: str, attachment_id: str | None = None
    ) -> str:
        """
        Rewrite every ``<img>`` tag in ``content`` that belongs to a known
        attachment. Untagged images and unknown attachments are left alone.
        """
        if attachment_id is not None:
            attachment_id = str(attachment_id)

        rewritten = []
        position = 0
        for match in IMG_TAG.finditer(content):
            tag = match.group(0)
            tag_attachment = attachment_id_from_tag(tag)

            if tag_attachment is not None and attachment_id in (None, tag_attachment):
                try:
                    tag = await self.img_tag_update_mime_type(tag, tag_attachment)
                except Exception as e:
                    logger.warning(
                        f"Failed to rewrite img tag for attachment {tag_attachment}: {e}"
                    )
                    tag = match.group(0)

            rewritten.append(content[position : match.start()])
            rewritten.append(tag)
            position = match.end()

        rewritten.append(content[position:])
        return "".join(rewritten)
