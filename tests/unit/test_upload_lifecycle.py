import io
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from imprint.core.exceptions import CircuitBreaker, InvalidTransitionError, NotFoundError, StorageError
from imprint.core.storage import StoredObject
from imprint.modules.templates.repositories import TemplateRepository
from imprint.modules.templates.schemas import TemplateCreate, TemplateUpdate
from imprint.modules.templates.services import TemplateService
from imprint.modules.uploads.repositories import UploadRepository
from imprint.modules.uploads.services import UploadLifecycleService, resource_type_for


@pytest.fixture
def templates(session):
    return TemplateService(TemplateRepository(session))


@pytest.fixture
def breaker():
    return CircuitBreaker("storage-test", failure_threshold=3)


@pytest.fixture
def make_service(session, staging_dir, breaker):
    def factory(storage):
        return UploadLifecycleService(
            uploads=UploadRepository(session),
            templates=TemplateRepository(session),
            storage=storage,
            staging_path=str(staging_dir),
            breaker=breaker
        )
    return factory


@pytest.fixture
def mock_storage():
    storage = AsyncMock()
    storage.backend = "mock"
    storage.store.return_value = StoredObject(identifier="uploads/x.jpg", url="/x.jpg", size=10)
    return storage


async def _template(templates, **overrides):
    data = {"name": "Social Square", "width": 1080, "height": 1080, "quality": 85}
    data.update(overrides)
    return await templates.create_template(TemplateCreate(**data))


def test_resource_type_for():
    assert resource_type_for("video/mp4") == "video"
    assert resource_type_for("image/png") == "image"


@pytest.mark.asyncio
async def test_template_upload_completes(make_service, storage, templates, jpeg_1080p, staging_dir):
    template = await _template(templates)
    service = make_service(storage)

    upload = await service.process_upload(jpeg_1080p, "holiday.jpg", "image/jpeg", template_id=template.id)

    assert upload.status == "completed"
    assert (upload.original_width, upload.original_height) == (1920, 1080)
    assert (upload.processed_width, upload.processed_height) == (1080, 1080)
    assert upload.processed_format == "jpeg"
    assert upload.storage_identifier.endswith(".jpg")
    assert upload.storage_url.endswith(upload.storage_identifier)
    assert upload.error_message is None
    assert upload.template_snapshot["width"] == 1080
    for stage in ("upload", "decode", "geometry", "tone", "encode", "storage"):
        assert upload.stages_metadata[stage]["status"] == "completed"

    stored = storage.base_path / upload.storage_identifier
    assert Image.open(io.BytesIO(stored.read_bytes())).size == (1080, 1080)
    assert list(staging_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_crop_failure_never_reaches_storage(make_service, mock_storage, templates, jpeg_800x600, staging_dir):
    template = await _template(
        templates, name="Bad Crop", width=500, height=500,
        crop_x=100, crop_y=100, crop_width=5000, crop_height=5000
    )
    service = make_service(mock_storage)

    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg", template_id=template.id)

    assert upload.status == "failed"
    assert upload.error_stage == "geometry"
    assert upload.storage_identifier is None
    assert upload.storage_url is None
    mock_storage.store.assert_not_called()
    assert list(staging_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_storage_failure_marks_upload_failed(
    make_service, mock_storage, templates, jpeg_800x600, breaker, staging_dir
):
    template = await _template(templates, width=100, height=100)
    mock_storage.store.side_effect = StorageError("bucket gone", backend="mock")
    service = make_service(mock_storage)

    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg", template_id=template.id)

    assert upload.status == "failed"
    assert upload.error_stage == "storage"
    assert upload.error_message == "bucket gone"
    assert upload.storage_identifier is None
    assert breaker._failure_count == 1
    assert list(staging_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_unexpected_storage_error_is_wrapped(make_service, mock_storage, jpeg_800x600):
    mock_storage.store.side_effect = RuntimeError("socket closed")
    service = make_service(mock_storage)

    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg")

    assert upload.status == "failed"
    assert upload.error_stage == "storage"
    assert "socket closed" in upload.error_message


@pytest.mark.asyncio
async def test_open_breaker_fails_fast(make_service, mock_storage, jpeg_800x600, breaker):
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()
    service = make_service(mock_storage)

    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg")

    assert upload.status == "failed"
    assert upload.error_stage == "storage"
    mock_storage.store.assert_not_called()


@pytest.mark.asyncio
async def test_passthrough_image_is_stored_unchanged(make_service, storage, png_500):
    service = make_service(storage)

    upload = await service.process_upload(png_500, "logo.png", "image/png")

    assert upload.status == "completed"
    assert upload.template_snapshot is None
    assert (upload.original_width, upload.original_height) == (500, 500)
    assert (upload.processed_width, upload.processed_height) == (500, 500)
    assert upload.stages_metadata["pipeline"]["status"] == "skipped"
    assert (storage.base_path / upload.storage_identifier).read_bytes() == png_500


@pytest.mark.asyncio
async def test_video_is_passed_through(make_service, mock_storage, templates):
    template = await _template(templates)
    service = make_service(mock_storage)
    data = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64

    upload = await service.process_upload(data, "clip.mp4", "video/mp4", template_id=template.id)

    assert upload.status == "completed"
    assert upload.resource_type == "video"
    assert upload.original_width is None
    args, kwargs = mock_storage.store.call_args
    assert args[0] == data
    assert kwargs["resource_type"] == "video"
    assert kwargs["content_type"] == "video/mp4"


@pytest.mark.asyncio
async def test_undecodable_image_fails_at_decode(make_service, mock_storage, templates):
    template = await _template(templates)
    service = make_service(mock_storage)

    upload = await service.process_upload(b"not an image", "a.png", "image/png", template_id=template.id)

    assert upload.status == "failed"
    assert upload.error_stage == "decode"
    mock_storage.store.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_template_fails(make_service, mock_storage, jpeg_800x600):
    service = make_service(mock_storage)

    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg", template_id="missing")

    assert upload.status == "failed"
    assert upload.error_stage == "template"


@pytest.mark.asyncio
async def test_inactive_template_fails(make_service, mock_storage, templates, jpeg_800x600):
    template = await _template(templates, is_active=False)
    service = make_service(mock_storage)

    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg", template_id=template.id)

    assert upload.status == "failed"
    assert upload.error_stage == "template"
    assert "inactive" in upload.error_message


@pytest.mark.asyncio
async def test_missing_staging_file_fails(make_service, mock_storage, jpeg_800x600):
    service = make_service(mock_storage)
    upload = await service.create_upload(jpeg_800x600, "a.jpg", "image/jpeg")
    assert upload.status == "pending"
    Path(upload.staging_path).unlink()

    upload, output = await service.run_pipeline(upload)

    assert output is None
    assert upload.status == "failed"
    assert upload.error_stage == "staging"


@pytest.mark.asyncio
async def test_terminal_upload_cannot_be_rerun(make_service, storage, templates, jpeg_800x600):
    template = await _template(templates, width=200, height=200)
    service = make_service(storage)
    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg", template_id=template.id)
    assert upload.status == "completed"
    await templates.update_template(template.id, TemplateUpdate(width=300))
    updated_at = upload.updated_at

    with pytest.raises(InvalidTransitionError):
        await service.run_pipeline(upload)

    assert upload.status == "completed"
    assert upload.template_snapshot["width"] == 200
    assert upload.updated_at == updated_at
    assert "template" not in upload.stages_metadata


@pytest.mark.asyncio
async def test_snapshot_survives_template_edits(make_service, storage, templates, jpeg_800x600):
    template = await _template(templates, width=200, height=200)
    service = make_service(storage)
    upload = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg", template_id=template.id)

    await templates.update_template(template.id, TemplateUpdate(width=300))

    reloaded = await service.get_upload(upload.id)
    assert reloaded.template_snapshot["width"] == 200
    assert reloaded.processed_width == 200


@pytest.mark.asyncio
async def test_list_uploads_filters_by_status(make_service, mock_storage, jpeg_800x600):
    service = make_service(mock_storage)
    await service.process_upload(jpeg_800x600, "ok.jpg", "image/jpeg")
    await service.process_upload(jpeg_800x600, "bad.jpg", "image/jpeg", template_id="missing")

    failed = await service.list_uploads(status="failed")
    assert failed.pagination.total == 1
    assert failed.uploads[0]["original_filename"] == "bad.jpg"

    everything = await service.list_uploads()
    assert everything.pagination.total == 2


@pytest.mark.asyncio
async def test_delete_stored_removes_file_and_keeps_record(make_service, storage, png_500):
    service = make_service(storage)
    upload = await service.process_upload(png_500, "logo.png", "image/png")
    stored_path = storage.base_path / upload.storage_identifier
    assert stored_path.exists()

    deleted = await service.delete_stored(upload.id)

    assert not stored_path.exists()
    assert deleted.status == "completed"
    assert deleted.stages_metadata["delete"]["identifier"] == upload.storage_identifier

    with pytest.raises(NotFoundError):
        await service.delete_stored(upload.id)


@pytest.mark.asyncio
async def test_delete_stored_unknown_upload(make_service, mock_storage):
    service = make_service(mock_storage)

    with pytest.raises(NotFoundError, match="Upload not found"):
        await service.delete_stored("missing")
    mock_storage.delete.assert_not_called()


@pytest.mark.asyncio
async def test_delete_stored_without_stored_file(make_service, mock_storage, jpeg_800x600):
    service = make_service(mock_storage)
    failed = await service.process_upload(jpeg_800x600, "a.jpg", "image/jpeg", template_id="missing")

    with pytest.raises(NotFoundError, match="Stored file not found"):
        await service.delete_stored(failed.id)
    mock_storage.delete.assert_not_called()

    completed = await service.process_upload(jpeg_800x600, "b.jpg", "image/jpeg")
    mock_storage.delete.return_value = False

    with pytest.raises(NotFoundError, match="Stored file not found"):
        await service.delete_stored(completed.id)
    mock_storage.delete.assert_awaited_once_with("uploads/x.jpg")
