"""
Upload Repository

Persistence for Upload rows. Only the upload lifecycle service writes
through this repository.
"""

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from imprint.modules.uploads.models import Upload


class UploadRepository:
    """Repository for upload lifecycle records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, upload: Upload) -> Upload:
        """Commit the upload's current state."""
        self.session.add(upload)
        await self.session.commit()
        await self.session.refresh(upload)
        return upload

    async def get(self, upload_id: str) -> Optional[Upload]:
        return await self.session.get(Upload, upload_id)

    async def list(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        template_id: Optional[str] = None
    ) -> Tuple[List[Upload], int]:
        """Newest first; returns (rows, total matching)."""
        statement = select(Upload)
        count_statement = select(func.count()).select_from(Upload)

        if status:
            statement = statement.where(Upload.status == status)
            count_statement = count_statement.where(Upload.status == status)
        if template_id:
            statement = statement.where(Upload.template_id == template_id)
            count_statement = count_statement.where(Upload.template_id == template_id)

        statement = (
            statement.order_by(Upload.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        total = (await self.session.execute(count_statement)).scalar_one()
        rows = (await self.session.execute(statement)).scalars().all()
        return list(rows), total
