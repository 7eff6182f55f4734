"""
Upload Lifecycle Service

Drives one upload through pending -> processing -> completed | failed:
stage the raw bytes, resolve and freeze the template, run the pipeline in
a worker thread, hand the result to storage and record the outcome.
The staging file is removed on every exit path.
"""

import asyncio
import math
from pathlib import Path
from typing import Optional, Tuple

from imprint.core.config import settings
from imprint.core.exceptions import (
    CircuitBreakerOpenError,
    CircuitBreaker,
    ImprintError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
    get_circuit_breaker,
)
from imprint.core.logging import LogContext, get_logger
from imprint.core.metrics import record_upload_finished, record_upload_started
from imprint.core.storage import IStorage
from imprint.modules.templates.repositories import TemplateRepository
from imprint.modules.templates.schemas import Pagination, TemplateRead
from imprint.modules.uploads.models import ResourceType, StageStatus, Upload, UploadStatus
from imprint.modules.uploads.repositories import UploadRepository
from imprint.modules.uploads.schemas import UploadListResponse
from imprint.pipeline import PipelineResult, run_pipeline

logger = get_logger(__name__)

FILE_EXTENSIONS = {"jpeg": "jpg", "png": "png", "webp": "webp", "avif": "avif"}


def resource_type_for(mime_type: str) -> str:
    return ResourceType.VIDEO.value if mime_type.startswith("video/") else ResourceType.IMAGE.value


class UploadLifecycleService:
    """The only writer of Upload rows."""

    def __init__(
        self,
        uploads: UploadRepository,
        templates: TemplateRepository,
        storage: IStorage,
        staging_path: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        self.uploads = uploads
        self.templates = templates
        self.storage = storage
        self.staging_path = Path(staging_path or settings.STAGING_PATH)
        self.breaker = breaker or get_circuit_breaker("storage")

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_upload(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        template_id: Optional[str] = None
    ) -> Upload:
        """Write the staging file and record a pending upload."""
        upload = Upload(
            original_filename=filename,
            mime_type=mime_type,
            file_size=len(data),
            resource_type=resource_type_for(mime_type),
            template_id=template_id or None
        )

        staging_file = self.staging_path / f"{upload.id}{Path(filename).suffix.lower()}"
        try:
            self.staging_path.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(staging_file.write_bytes, data)
        except OSError as e:
            raise StorageError(f"Could not write staging file: {e}", stage="staging", upload_id=upload.id)

        upload.staging_path = str(staging_file)
        upload.update_stage("upload", StageStatus.COMPLETED.value, metadata={"size": len(data)})
        upload = await self.uploads.save(upload)

        logger.info(
            "upload_created",
            upload_id=upload.id,
            filename=filename,
            mime_type=mime_type,
            size=len(data),
            template_id=upload.template_id
        )
        return upload

    # =========================================================================
    # Processing
    # =========================================================================

    async def run_pipeline(
        self,
        upload: Upload,
        folder: Optional[str] = None
    ) -> Tuple[Upload, Optional[bytes]]:
        """
        Process a pending upload to a terminal state.

        Returns the upload and the bytes that were stored (None on failure).
        Failures are recorded on the upload, not raised. An upload that is
        not pending raises InvalidTransitionError before anything changes.
        """
        if upload.status != UploadStatus.PENDING.value:
            raise InvalidTransitionError(upload.status, UploadStatus.PROCESSING.value, upload_id=upload.id)

        with LogContext(upload_id=upload.id) as ctx:
            try:
                return await self._run(upload, folder or settings.DEFAULT_UPLOAD_FOLDER, ctx)
            finally:
                self._remove_staging_file(upload)

    async def _run(
        self,
        upload: Upload,
        folder: str,
        ctx: LogContext
    ) -> Tuple[Upload, Optional[bytes]]:
        ctx.set_stage("template")
        template: Optional[TemplateRead] = None
        if upload.template_id:
            row = await self.templates.get(upload.template_id)
            if row is None:
                return await self._fail(
                    upload,
                    NotFoundError(f"Template not found: {upload.template_id}", stage="template")
                )
            if not row.is_active:
                return await self._fail(
                    upload,
                    ValidationError(f"Template is inactive: {row.name}", stage="template")
                )
            template = TemplateRead.model_validate(row)
            upload.template_snapshot = template.model_dump(
                mode="json", exclude={"created_at", "updated_at"}
            )

        try:
            data = await asyncio.to_thread(Path(upload.staging_path).read_bytes)
        except OSError as e:
            return await self._fail(
                upload,
                StorageError(f"Could not read staging file: {e}", stage="staging")
            )
        is_image = upload.resource_type == ResourceType.IMAGE.value

        if template is not None and is_image:
            upload.mark_processing()
            record_upload_started()
            upload.update_stage("pipeline", StageStatus.IN_PROGRESS.value)
            upload = await self.uploads.save(upload)

            ctx.set_stage("pipeline")
            result = await asyncio.to_thread(run_pipeline, data, template)
            self._record_pipeline_progress(upload, result)

            if not result.ok:
                return await self._fail(upload, result.error)

            upload.update_stage(
                "pipeline",
                StageStatus.COMPLETED.value,
                duration_ms=result.metadata.total_duration_ms,
                metadata={"warnings": result.metadata.warnings}
            )
            upload = await self.uploads.save(upload)

            output = result.output
            extension = FILE_EXTENSIONS[result.metadata.format]
            filename = f"{Path(upload.original_filename).stem}.{extension}"
            content_type = f"image/{result.metadata.format}"
        else:
            result = await asyncio.to_thread(run_pipeline, data, None) if is_image else None
            if result is not None:
                upload.original_width = result.metadata.original_width
                upload.original_height = result.metadata.original_height
            upload.mark_processing()
            record_upload_started()
            upload.update_stage("pipeline", StageStatus.SKIPPED.value)
            upload = await self.uploads.save(upload)

            output = data
            filename = upload.original_filename
            content_type = upload.mime_type

        ctx.set_stage("storage")
        return await self._store(upload, output, filename, content_type, folder, result)

    def _record_pipeline_progress(self, upload: Upload, result: PipelineResult):
        metadata = result.metadata
        upload.original_width = metadata.original_width
        upload.original_height = metadata.original_height
        for stage, stage_meta in metadata.stages.items():
            extra = {k: v for k, v in stage_meta.items() if k != "duration_ms"}
            upload.update_stage(
                stage,
                StageStatus.SKIPPED.value if extra.get("skipped") else StageStatus.COMPLETED.value,
                duration_ms=stage_meta.get("duration_ms"),
                metadata=extra
            )

    async def _store(
        self,
        upload: Upload,
        output: bytes,
        filename: str,
        content_type: str,
        folder: str,
        result: Optional[PipelineResult]
    ) -> Tuple[Upload, Optional[bytes]]:
        if not self.breaker.can_execute():
            return await self._fail(upload, CircuitBreakerOpenError(self.breaker.name))

        upload.update_stage("storage", StageStatus.IN_PROGRESS.value)
        try:
            stored = await self.storage.store(
                output,
                filename,
                folder=folder,
                content_type=content_type,
                resource_type=upload.resource_type
            )
        except Exception as e:
            error = e if isinstance(e, StorageError) else StorageError(f"Storage hand-off failed: {e}")
            self.breaker.record_failure(e)
            return await self._fail(upload, error)

        self.breaker.record_success()
        upload.update_stage(
            "storage",
            StageStatus.COMPLETED.value,
            metadata={"identifier": stored.identifier, "backend": self.storage.backend}
        )

        metadata = result.metadata if result is not None else None
        upload.mark_completed(
            storage_identifier=stored.identifier,
            storage_url=stored.url,
            width=metadata.width if metadata and metadata.width else stored.width,
            height=metadata.height if metadata and metadata.height else stored.height,
            output_format=metadata.format if metadata else None,
            size=stored.size or len(output)
        )
        record_upload_finished(UploadStatus.COMPLETED.value)
        upload = await self.uploads.save(upload)

        logger.info(
            "upload_completed",
            upload_id=upload.id,
            storage_identifier=upload.storage_identifier,
            processed_width=upload.processed_width,
            processed_height=upload.processed_height
        )
        return upload, output

    async def _fail(self, upload: Upload, error: ImprintError) -> Tuple[Upload, None]:
        was_processing = upload.status == UploadStatus.PROCESSING.value
        stage = error.stage or "pipeline"

        upload.mark_failed(error.message, stage)
        record_upload_finished(UploadStatus.FAILED.value, failure_stage=stage, was_processing=was_processing)
        upload = await self.uploads.save(upload)

        logger.warning(
            "upload_failed",
            upload_id=upload.id,
            stage=stage,
            error=error.message,
            code=error.code
        )
        return upload, None

    def _remove_staging_file(self, upload: Upload):
        if not upload.staging_path:
            return
        path = Path(upload.staging_path)
        if not path.exists():
            return
        try:
            path.unlink()
        except OSError as e:
            logger.warning("staging_cleanup_failed", upload_id=upload.id, path=str(path), error=str(e))

    async def process_upload(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        template_id: Optional[str] = None,
        folder: Optional[str] = None
    ) -> Upload:
        """Create then run; the convenience path used by the API."""
        upload = await self.create_upload(data, filename, mime_type, template_id)
        upload, _ = await self.run_pipeline(upload, folder=folder)
        return upload

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_upload(self, upload_id: str) -> Upload:
        upload = await self.uploads.get(upload_id)
        if upload is None:
            raise NotFoundError("Upload not found", details={"upload_id": upload_id})
        return upload

    async def delete_stored(self, upload_id: str) -> Upload:
        """
        Remove the stored output of an upload from the storage backend.

        The upload row is kept; the deletion is recorded as a stage.

        Raises:
            NotFoundError: unknown upload, or nothing stored under its identifier
        """
        upload = await self.get_upload(upload_id)
        identifier = upload.storage_identifier
        if not identifier:
            raise NotFoundError("Stored file not found", details={"upload_id": upload_id})

        if not await self.storage.delete(identifier):
            raise NotFoundError(
                "Stored file not found",
                details={"upload_id": upload_id, "identifier": identifier}
            )

        upload.update_stage(
            "delete",
            StageStatus.COMPLETED.value,
            metadata={"identifier": identifier, "backend": self.storage.backend}
        )
        upload = await self.uploads.save(upload)

        logger.info("stored_file_deleted", upload_id=upload.id, storage_identifier=identifier)
        return upload

    async def list_uploads(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        template_id: Optional[str] = None
    ) -> UploadListResponse:
        rows, total = await self.uploads.list(
            page=page, limit=limit, status=status, template_id=template_id
        )
        total_pages = math.ceil(total / limit) if limit else 0
        return UploadListResponse(
            uploads=[row.to_response_dict() for row in rows],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
                has_next_page=page < total_pages,
                has_prev_page=page > 1
            )
        )
