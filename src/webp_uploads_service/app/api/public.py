from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from loguru import logger

from ..core.config import Settings
from ..core.dependencies import (
    get_attachment_service,
    get_file_storage,
    get_image_editor,
    get_reference_rewriter,
    get_settings_dependency,
)
from ..db.database import check_database_health
from ..models import Attachment
from ..schemas import (
    AttachmentResponse,
    ContentRewriteRequest,
    ContentRewriteResponse,
    DeleteResponse,
    EditRequest,
)
from ..services.attachment_service import AttachmentService
from ..services.errors import AttachmentNotFound, ImageSourceError
from ..services.file_storage import FileStorageService
from ..services.image_editor import ImageEditService
from ..services.reference_rewriter import ReferenceRewriter

router = APIRouter()


async def _attachment_response(
    attachment: Attachment,
    attachment_service: AttachmentService,
    file_storage: FileStorageService,
) -> AttachmentResponse:
    media_details = await attachment_service.get_media_details(str(attachment.id))
    return AttachmentResponse(
        id=attachment.id,
        original_filename=attachment.original_filename,
        mime_type=attachment.mime_type,
        status=attachment.status.value,
        source_url=file_storage.url_for(media_details.file),
        media_details=media_details,
        created_at=attachment.created_at,
    )


@router.post("/attachments", response_model=AttachmentResponse)
async def upload_attachment(
    file: UploadFile = File(...),
    attachment_service: AttachmentService = Depends(get_attachment_service),
    file_storage: FileStorageService = Depends(get_file_storage),
    settings: Settings = Depends(get_settings_dependency),
):
    """
    Upload an image and generate its sizes and alternate-format sources.

    Args:
        file: Image file to upload

    Returns:
        AttachmentResponse with the media details of the new attachment

    Raises:
        HTTPException: For invalid files or processing errors
    """
    logger.info(f"Received attachment upload request: {file.filename}")

    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    try:
        file_data = await file.read()

        if len(file_data) == 0:
            raise HTTPException(status_code=400, detail="Empty file provided")

        if len(file_data) > settings.MAX_FILE_SIZE:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size is {settings.MAX_FILE_SIZE // (1024 * 1024)}MB",
            )

        attachment = await attachment_service.upload(file_data, file.filename)
        return await _attachment_response(attachment, attachment_service, file_storage)

    except HTTPException:
        raise
    except (ValueError, ImageSourceError) as e:
        logger.warning(f"Validation error for file {file.filename}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    except IOError as e:
        logger.error(f"File I/O error for {file.filename}: {e}")
        raise HTTPException(status_code=500, detail="Failed to process file")

    except Exception as e:
        logger.error(f"Unexpected error uploading {file.filename}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/attachments/{attachment_id}", response_model=AttachmentResponse)
async def get_attachment(
    attachment_id: UUID,
    attachment_service: AttachmentService = Depends(get_attachment_service),
    file_storage: FileStorageService = Depends(get_file_storage),
):
    """Media details of an attachment, with a public URL for every source."""
    logger.info(f"Getting attachment {attachment_id}")

    try:
        attachment = await attachment_service.get_attachment(str(attachment_id))
        return await _attachment_response(attachment, attachment_service, file_storage)

    except AttachmentNotFound:
        raise HTTPException(status_code=404, detail=f"Attachment {attachment_id} not found")
    except Exception as e:
        logger.error(f"Error getting attachment {attachment_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/attachments/{attachment_id}/edit", response_model=AttachmentResponse)
async def edit_attachment(
    attachment_id: UUID,
    request: EditRequest,
    image_editor: ImageEditService = Depends(get_image_editor),
    attachment_service: AttachmentService = Depends(get_attachment_service),
    file_storage: FileStorageService = Depends(get_file_storage),
):
    """
    Apply rotate, flip and crop operations to an attachment.

    The previous state is backed up first so it can be restored later.
    """
    logger.info(f"Editing attachment {attachment_id}")

    try:
        await image_editor.edit(str(attachment_id), request.operations)
        attachment = await attachment_service.get_attachment(str(attachment_id))
        return await _attachment_response(attachment, attachment_service, file_storage)

    except AttachmentNotFound:
        raise HTTPException(status_code=404, detail=f"Attachment {attachment_id} not found")
    except (ValueError, ImageSourceError) as e:
        logger.warning(f"Invalid edit of attachment {attachment_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error editing attachment {attachment_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/attachments/{attachment_id}/restore", response_model=AttachmentResponse)
async def restore_attachment(
    attachment_id: UUID,
    attachment_service: AttachmentService = Depends(get_attachment_service),
    file_storage: FileStorageService = Depends(get_file_storage),
):
    """Revert an attachment to its state before the first edit."""
    logger.info(f"Restoring attachment {attachment_id}")

    try:
        attachment = await attachment_service.restore(str(attachment_id))
        return await _attachment_response(attachment, attachment_service, file_storage)

    except AttachmentNotFound:
        raise HTTPException(status_code=404, detail=f"Attachment {attachment_id} not found")
    except Exception as e:
        logger.error(f"Error restoring attachment {attachment_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/attachments/{attachment_id}", response_model=DeleteResponse)
async def delete_attachment(
    attachment_id: UUID,
    force: bool = False,
    attachment_service: AttachmentService = Depends(get_attachment_service),
):
    """
    Trash an attachment, or delete it with every derivative file.

    Args:
        force: Skip the trash and delete permanently
    """
    logger.info(f"Deleting attachment {attachment_id} (force={force})")

    try:
        result = await attachment_service.delete(str(attachment_id), force=force)
        return DeleteResponse(
            id=UUID(result.attachment_id),
            deleted=result.deleted,
            status=result.status,
            files_removed=result.files_removed,
        )

    except AttachmentNotFound:
        raise HTTPException(status_code=404, detail=f"Attachment {attachment_id} not found")
    except Exception as e:
        logger.error(f"Error deleting attachment {attachment_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/content/rewrite", response_model=ContentRewriteResponse)
async def rewrite_content(
    request: ContentRewriteRequest,
    reference_rewriter: ReferenceRewriter = Depends(get_reference_rewriter),
):
    """Point the img tags of an HTML fragment at the preferred image format."""
    attachment_id = str(request.attachment_id) if request.attachment_id else None
    content = await reference_rewriter.rewrite_references(request.content, attachment_id)
    return ContentRewriteResponse(content=content)


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    database_healthy = await check_database_health()
    return {
        "status": "healthy" if database_healthy else "degraded",
        "service": "webp-uploads",
        "database": database_healthy,
    }
