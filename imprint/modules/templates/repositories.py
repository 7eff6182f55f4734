"""
Template Repository

Persistence for Template rows over an AsyncSession. Owns the
single-default invariant: switching the default clears every other
flag and sets the new one in the same commit.

Concurrent switches are serialised twice. The module-level asyncio.Lock
only covers coroutines on one event loop in one process. Across workers
the current default rows are read with SELECT ... FOR UPDATE before they
are cleared, which holds a row lock on PostgreSQL and MySQL. SQLite has
no row locks and drops the clause; it serialises writers on the database
file instead.
"""

import asyncio
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from imprint.core.exceptions import ConflictError
from imprint.core.logging import get_logger
from imprint.modules.templates.models import Template, utc_now
from imprint.modules.uploads.models import Upload

logger = get_logger(__name__)


def current_defaults_for_update():
    """Lock the rows currently flagged as default until the commit."""
    return (
        select(Template.id)
        .where(Template.is_default == True)  # noqa: E712
        .with_for_update()
    )


SORTABLE_COLUMNS = {
    "name": Template.name,
    "created_at": Template.created_at,
    "updated_at": Template.updated_at,
    "width": Template.width,
    "height": Template.height,
    "quality": Template.quality,
}

# One process, one event loop; see the module docstring for other workers
_default_lock = asyncio.Lock()


class TemplateRepository:
    """Repository for templates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _commit(self, template: Template) -> Template:
        name = template.name
        async with _default_lock:
            try:
                if template.is_default:
                    await self.clear_other_defaults(template.id)
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                raise ConflictError(
                    f"Template with name '{name}' already exists",
                    details={"name": name}
                )
        await self.session.refresh(template)
        return template

    async def add(self, template: Template) -> Template:
        """Insert a template; a taken name raises ConflictError."""
        self.session.add(template)
        return await self._commit(template)

    async def save(self, template: Template) -> Template:
        """Persist changes made to a loaded template."""
        template.updated_at = utc_now()
        self.session.add(template)
        return await self._commit(template)

    async def delete(self, template: Template):
        await self.session.delete(template)
        await self.session.commit()

    async def get(self, template_id: str) -> Optional[Template]:
        return await self.session.get(Template, template_id)

    async def get_by_name(self, name: str) -> Optional[Template]:
        result = await self.session.execute(
            select(Template).where(Template.name == name)
        )
        return result.scalar_one_or_none()

    async def get_default(self) -> Optional[Template]:
        """The default template, only if it is also active."""
        result = await self.session.execute(
            select(Template)
            .where(Template.is_default == True)  # noqa: E712
            .where(Template.is_active == True)  # noqa: E712
        )
        return result.scalars().first()

    async def list(
        self,
        page: int = 1,
        limit: int = 10,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> Tuple[List[Template], int]:
        """Page through templates; returns (rows, total matching)."""
        statement = select(Template)
        count_statement = select(func.count()).select_from(Template)

        if is_active is not None:
            statement = statement.where(Template.is_active == is_active)
            count_statement = count_statement.where(Template.is_active == is_active)

        if search:
            pattern = f"%{search}%"
            condition = or_(
                Template.name.ilike(pattern),
                Template.description.ilike(pattern)
            )
            statement = statement.where(condition)
            count_statement = count_statement.where(condition)

        column = SORTABLE_COLUMNS.get(sort_by, Template.created_at)
        statement = statement.order_by(column.asc() if sort_order == "asc" else column.desc())
        statement = statement.offset((page - 1) * limit).limit(limit)

        total = (await self.session.execute(count_statement)).scalar_one()
        rows = (await self.session.execute(statement)).scalars().all()
        return list(rows), total

    async def set_default(self, template: Template) -> Template:
        """Make template the only default (and active) one."""
        template.is_default = True
        template.is_active = True
        template.updated_at = utc_now()
        self.session.add(template)
        await self._commit(template)

        logger.info("default_template_set", template_id=template.id, name=template.name)
        return template

    async def clear_other_defaults(self, keep_id: str):
        """Unset is_default on every row except keep_id (caller commits)."""
        await self.session.execute(current_defaults_for_update())
        await self.session.execute(
            update(Template)
            .where(Template.is_default == True)  # noqa: E712
            .where(Template.id != keep_id)
            .values(is_default=False, updated_at=utc_now())
        )

    async def count_uploads(self, template_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Upload).where(Upload.template_id == template_id)
        )
        return result.scalar_one()

    async def recent_uploads(self, template_id: str, limit: int = 5) -> List[Upload]:
        result = await self.session.execute(
            select(Upload)
            .where(Upload.template_id == template_id)
            .order_by(Upload.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
