class ImageSourceError(Exception):
    """Base error for derivative generation; ``code`` is stable for callers."""

    code = "image_source_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class OriginalFileNotFound(ImageSourceError):
    code = "original_image_file_not_found"


class NoEditor(ImageSourceError):
    code = "image_no_editor"


class InvalidMimeType(ImageSourceError):
    code = "image_mime_type_invalid"


class MimeTypeNotSupported(ImageSourceError):
    code = "image_mime_type_not_supported"


class InvalidMetadata(ImageSourceError):
    code = "image_mime_type_invalid_metadata"


class InvalidImageDimensions(ImageSourceError):
    code = "image_wrong_dimensions"


class AttachmentNotFound(LookupError):
    def __init__(self, attachment_id: str):
        self.attachment_id = attachment_id
        super().__init__(f"Attachment {attachment_id} not found")
