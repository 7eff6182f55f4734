"""
Template Endpoints

POST   /api/v1/templates                      - Create a template
GET    /api/v1/templates                      - List templates (paged, searchable)
GET    /api/v1/templates/default              - The active default template
POST   /api/v1/templates/defaults             - Create the built-in presets
GET    /api/v1/templates/{id}                 - Get one template
PUT    /api/v1/templates/{id}                 - Partial update, re-validated whole
DELETE /api/v1/templates/{id}                 - Delete (refused while uploads use it)
PATCH  /api/v1/templates/{id}/default         - Make it the default
PATCH  /api/v1/templates/{id}/toggle-status   - Flip active/inactive
POST   /api/v1/templates/{id}/duplicate       - Copy under a new name
GET    /api/v1/templates/{id}/stats           - Usage statistics
"""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from imprint.api.dependencies import get_template_service
from imprint.modules.templates.schemas import (
    DuplicateTemplateRequest,
    TemplateCreate,
    TemplateListResponse,
    TemplateRead,
    TemplateStats,
    TemplateUpdate,
)
from imprint.modules.templates.services import TemplateService

router = APIRouter()

SortField = Literal["name", "created_at", "updated_at", "width", "height", "quality"]


@router.post("", response_model=TemplateRead, status_code=status.HTTP_201_CREATED)
async def create_template(
    payload: TemplateCreate,
    service: TemplateService = Depends(get_template_service)
):
    return await service.create_template(payload)


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: SortField = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    service: TemplateService = Depends(get_template_service)
):
    """
    List templates.

    Search matches name or description, case-insensitively.
    """
    return await service.list_templates(
        page=page,
        limit=limit,
        is_active=is_active,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order
    )


@router.get("/default", response_model=TemplateRead)
async def get_default_template(service: TemplateService = Depends(get_template_service)):
    return await service.get_default_template()


@router.post("/defaults", response_model=List[TemplateRead], status_code=status.HTTP_201_CREATED)
async def create_default_templates(service: TemplateService = Depends(get_template_service)):
    """Create the built-in presets; names that already exist are skipped."""
    return await service.create_default_templates()


@router.get("/{template_id}", response_model=TemplateRead)
async def get_template(
    template_id: str,
    service: TemplateService = Depends(get_template_service)
):
    return await service.get_template(template_id)


@router.put("/{template_id}", response_model=TemplateRead)
async def update_template(
    template_id: str,
    payload: TemplateUpdate,
    service: TemplateService = Depends(get_template_service)
):
    return await service.update_template(template_id, payload)


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    service: TemplateService = Depends(get_template_service)
):
    await service.delete_template(template_id)
    return {"message": "Template deleted successfully", "id": template_id}


@router.patch("/{template_id}/default", response_model=TemplateRead)
async def set_default_template(
    template_id: str,
    service: TemplateService = Depends(get_template_service)
):
    return await service.set_default_template(template_id)


@router.patch("/{template_id}/toggle-status", response_model=TemplateRead)
async def toggle_template_status(
    template_id: str,
    service: TemplateService = Depends(get_template_service)
):
    return await service.toggle_template_status(template_id)


@router.post(
    "/{template_id}/duplicate",
    response_model=TemplateRead,
    status_code=status.HTTP_201_CREATED
)
async def duplicate_template(
    template_id: str,
    payload: DuplicateTemplateRequest,
    service: TemplateService = Depends(get_template_service)
):
    return await service.duplicate_template(template_id, payload.name)


@router.get("/{template_id}/stats", response_model=TemplateStats)
async def get_template_stats(
    template_id: str,
    service: TemplateService = Depends(get_template_service)
):
    return await service.get_template_stats(template_id)
