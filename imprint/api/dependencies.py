"""
FastAPI Dependencies

Per-request wiring of repositories and services onto the request's
database session and the process-wide storage backend.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from imprint.core.database import get_session
from imprint.core.storage import IStorage, get_storage
from imprint.modules.templates.repositories import TemplateRepository
from imprint.modules.templates.services import TemplateService
from imprint.modules.uploads.repositories import UploadRepository
from imprint.modules.uploads.services import UploadLifecycleService


def get_template_service(session: AsyncSession = Depends(get_session)) -> TemplateService:
    return TemplateService(TemplateRepository(session))


def get_upload_service(
    session: AsyncSession = Depends(get_session),
    storage: IStorage = Depends(get_storage)
) -> UploadLifecycleService:
    return UploadLifecycleService(
        uploads=UploadRepository(session),
        templates=TemplateRepository(session),
        storage=storage
    )
