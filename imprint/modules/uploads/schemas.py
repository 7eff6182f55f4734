from pydantic import BaseModel
from typing import Any, Dict, List

from imprint.modules.templates.schemas import Pagination


class UploadListResponse(BaseModel):
    uploads: List[Dict[str, Any]]
    pagination: Pagination


class BatchUploadResponse(BaseModel):
    """Per-file outcome of a batch upload; failures do not stop the batch."""
    uploads: List[Dict[str, Any]]
    total: int
    completed: int
    failed: int

