"""
Template Service

Business operations over templates: CRUD, the default template switch,
activation, duplication, usage statistics and the built-in presets.
Parameters are validated here, once; the pipeline trusts what it receives.
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from imprint.core.exceptions import ConflictError, NotFoundError, ValidationError
from imprint.core.logging import get_logger
from imprint.modules.templates.models import Template
from imprint.modules.templates.repositories import TemplateRepository
from imprint.modules.templates.schemas import (
    Pagination,
    RecentUpload,
    TemplateCreate,
    TemplateListResponse,
    TemplateRead,
    TemplateStats,
    TemplateUpdate,
)

logger = get_logger(__name__)


# =============================================================================
# Built-in Presets
# =============================================================================

DEFAULT_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "Social Media Square",
        "description": "Perfect for Instagram posts and social media squares",
        "width": 1080,
        "height": 1080,
        "quality": 85,
        "format": "jpeg",
        "fit": "cover",
        "is_default": True,
    },
    {
        "name": "YouTube Thumbnail",
        "description": "Optimized for YouTube video thumbnails",
        "width": 1280,
        "height": 720,
        "quality": 90,
        "format": "jpeg",
        "fit": "cover",
    },
    {
        "name": "Profile Picture",
        "description": "Standard profile picture size",
        "width": 400,
        "height": 400,
        "quality": 85,
        "format": "jpeg",
        "fit": "cover",
    },
    {
        "name": "Web Optimized",
        "description": "Optimized for web usage with smaller file size",
        "width": 800,
        "height": 600,
        "quality": 70,
        "format": "webp",
        "fit": "cover",
    },
    {
        "name": "Print Ready",
        "description": "High quality for print materials",
        "width": 3000,
        "height": 2000,
        "quality": 95,
        "format": "jpeg",
        "fit": "cover",
    },
]


def _validation_details(error: PydanticValidationError) -> List[Dict[str, Any]]:
    return error.errors(include_url=False, include_context=False, include_input=False)


class TemplateService:
    """Template operations on top of a TemplateRepository."""

    def __init__(self, repository: TemplateRepository):
        self.repository = repository

    async def create_template(self, data: TemplateCreate) -> Template:
        template = Template(**data.model_dump())
        template = await self.repository.add(template)
        logger.info("template_created", template_id=template.id, name=template.name)
        return template

    async def list_templates(
        self,
        page: int = 1,
        limit: int = 10,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> TemplateListResponse:
        rows, total = await self.repository.list(
            page=page,
            limit=limit,
            is_active=is_active,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order
        )
        total_pages = math.ceil(total / limit) if limit else 0
        return TemplateListResponse(
            templates=[TemplateRead.model_validate(row) for row in rows],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
                has_next_page=page < total_pages,
                has_prev_page=page > 1
            )
        )

    async def get_template(self, template_id: str) -> Template:
        template = await self.repository.get(template_id)
        if template is None:
            raise NotFoundError("Template not found", details={"template_id": template_id})
        return template

    async def get_template_by_name(self, name: str) -> Template:
        template = await self.repository.get_by_name(name)
        if template is None:
            raise NotFoundError("Template not found", details={"name": name})
        return template

    async def update_template(self, template_id: str, update: TemplateUpdate) -> Template:
        """Merge a partial update onto the stored row and re-validate the whole."""
        template = await self.get_template(template_id)

        merged = template.parameters() | update.model_dump(exclude_unset=True)
        try:
            validated = TemplateCreate(**merged)
        except PydanticValidationError as e:
            raise ValidationError(
                "Validation failed",
                details={"errors": _validation_details(e)}
            )

        for field, value in validated.model_dump().items():
            setattr(template, field, value)

        template = await self.repository.save(template)
        logger.info("template_updated", template_id=template.id)
        return template

    async def delete_template(self, template_id: str):
        """Delete a template that no upload references."""
        template = await self.get_template(template_id)

        uploads_count = await self.repository.count_uploads(template_id)
        if uploads_count > 0:
            raise ConflictError(
                f"Cannot delete template. It has {uploads_count} associated uploads.",
                details={"template_id": template_id, "uploads": uploads_count}
            )

        await self.repository.delete(template)
        logger.info("template_deleted", template_id=template_id)

    async def set_default_template(self, template_id: str) -> Template:
        template = await self.get_template(template_id)
        return await self.repository.set_default(template)

    async def get_default_template(self) -> Template:
        template = await self.repository.get_default()
        if template is None:
            raise NotFoundError("No default template found")
        return template

    async def toggle_template_status(self, template_id: str) -> Template:
        template = await self.get_template(template_id)
        template.is_active = not template.is_active
        template = await self.repository.save(template)
        logger.info("template_status_toggled", template_id=template.id, is_active=template.is_active)
        return template

    async def duplicate_template(self, template_id: str, new_name: str) -> Template:
        """Copy every parameter under a new name; the copy is active, never default."""
        source = await self.get_template(template_id)

        data = source.parameters()
        data.update(name=new_name, is_default=False, is_active=True)
        try:
            validated = TemplateCreate(**data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Validation failed",
                details={"errors": _validation_details(e)}
            )

        return await self.create_template(validated)

    async def get_template_stats(self, template_id: str) -> TemplateStats:
        template = await self.get_template(template_id)
        total = await self.repository.count_uploads(template_id)
        recent = await self.repository.recent_uploads(template_id, limit=5)
        return TemplateStats(
            template=TemplateRead.model_validate(template),
            total_uploads=total,
            recent_uploads=[
                RecentUpload(
                    id=u.id,
                    original_filename=u.original_filename,
                    status=u.status,
                    created_at=u.created_at
                )
                for u in recent
            ]
        )

    async def create_default_templates(self) -> List[Template]:
        """Create the built-in presets, skipping names that already exist."""
        created = []
        for preset in DEFAULT_TEMPLATES:
            if await self.repository.get_by_name(preset["name"]) is not None:
                continue
            created.append(await self.create_template(TemplateCreate(**preset)))

        logger.info("default_templates_created", count=len(created))
        return created
