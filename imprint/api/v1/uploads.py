"""
Upload Endpoints

POST /api/v1/uploads        - Upload one file, optionally through a template
POST /api/v1/uploads/batch  - Upload up to MAX_BATCH_FILES files
GET  /api/v1/uploads        - List uploads (paged, filter by status/template)
GET  /api/v1/uploads/{id}   - Upload status, dimensions, storage location
DELETE /api/v1/uploads/{id}/storage - Remove the stored file of an upload
"""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import JSONResponse

from imprint.api.dependencies import get_upload_service
from imprint.core.config import settings
from imprint.core.exceptions import ValidationError
from imprint.core.logging import get_logger
from imprint.modules.uploads.models import UploadStatus
from imprint.modules.uploads.schemas import BatchUploadResponse, UploadListResponse
from imprint.modules.uploads.services import UploadLifecycleService

logger = get_logger(__name__)
router = APIRouter()

MAX_UPLOAD_SIZE_MB = settings.MAX_UPLOAD_SIZE_BYTES / (1024 * 1024)

# Relative storage folder: slash-separated segments, no dots
FOLDER_PATTERN = r"^[A-Za-z0-9_-]+(/[A-Za-z0-9_-]+)*$"


# =============================================================================
# Boundary Validation
# =============================================================================

async def read_validated(file: UploadFile) -> bytes:
    """
    Read an uploaded file after checking its type and size.

    Raises:
        ValidationError: empty, too large or not an allowed MIME type
    """
    mime_type = file.content_type or ""
    if mime_type not in settings.allowed_mime_types:
        raise ValidationError(
            "Invalid file type. Only images and videos are allowed.",
            details={"filename": file.filename, "mime_type": mime_type}
        )

    data = await file.read()
    if not data:
        raise ValidationError("No file uploaded", details={"filename": file.filename})
    if len(data) > settings.MAX_UPLOAD_SIZE_BYTES:
        raise ValidationError(
            f"File too large. Maximum file size is {MAX_UPLOAD_SIZE_MB:.0f}MB",
            details={"filename": file.filename, "size": len(data)}
        )
    return data


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    template_id: Optional[str] = Form(None),
    folder: Optional[str] = Form(None, pattern=FOLDER_PATTERN),
    service: UploadLifecycleService = Depends(get_upload_service)
):
    """
    Upload a single file.

    Images with a template are transformed before storage; everything else
    is stored as-is. A failed upload is still recorded and returned, with
    status 422 and the failing stage.
    """
    data = await read_validated(file)
    upload = await service.process_upload(
        data,
        file.filename or "upload",
        file.content_type,
        template_id=template_id,
        folder=folder
    )

    body = upload.to_response_dict()
    if upload.status == UploadStatus.FAILED.value:
        return JSONResponse(
            status_code=422,
            content={"error": upload.error_message, "stage": upload.error_stage, "upload": body}
        )
    return body


@router.post("/batch", response_model=BatchUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_batch(
    files: List[UploadFile] = File(...),
    template_id: Optional[str] = Form(None),
    folder: Optional[str] = Form(None, pattern=FOLDER_PATTERN),
    service: UploadLifecycleService = Depends(get_upload_service)
):
    """
    Upload several files through the same template.

    Files are validated up front; each is then processed independently and
    one failure does not stop the rest.
    """
    if len(files) > settings.MAX_BATCH_FILES:
        raise ValidationError(
            f"Too many files. Maximum {settings.MAX_BATCH_FILES} files allowed",
            details={"count": len(files)}
        )

    payloads = [(file, await read_validated(file)) for file in files]

    results = []
    for file, data in payloads:
        upload = await service.process_upload(
            data,
            file.filename or "upload",
            file.content_type,
            template_id=template_id,
            folder=folder
        )
        results.append(upload.to_response_dict())

    completed = sum(1 for r in results if r["status"] == UploadStatus.COMPLETED.value)
    logger.info("batch_upload_finished", total=len(results), completed=completed)
    return BatchUploadResponse(
        uploads=results,
        total=len(results),
        completed=completed,
        failed=len(results) - completed
    )


@router.get("", response_model=UploadListResponse)
async def list_uploads(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[Literal["pending", "processing", "completed", "failed"]] = Query(None),
    template_id: Optional[str] = Query(None),
    service: UploadLifecycleService = Depends(get_upload_service)
):
    return await service.list_uploads(page=page, limit=limit, status=status, template_id=template_id)


@router.get("/{upload_id}")
async def get_upload(
    upload_id: str,
    service: UploadLifecycleService = Depends(get_upload_service)
):
    upload = await service.get_upload(upload_id)
    return upload.to_response_dict()


@router.delete("/{upload_id}/storage")
async def delete_stored_file(
    upload_id: str,
    service: UploadLifecycleService = Depends(get_upload_service)
):
    """Delete the stored output of an upload; the upload record is kept."""
    upload = await service.delete_stored(upload_id)
    return {"message": "File deleted successfully", "id": upload.id}
