"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- /api/v1/templates/* - Template management
- /api/v1/uploads/* - Upload and process files
- /api/v1/metrics - Prometheus scrape endpoint
"""

from fastapi import APIRouter

from imprint.api.v1.templates import router as templates_router
from imprint.api.v1.uploads import router as uploads_router
from imprint.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(templates_router, prefix="/templates", tags=["templates"])
api_v1_router.include_router(uploads_router, prefix="/uploads", tags=["uploads"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
