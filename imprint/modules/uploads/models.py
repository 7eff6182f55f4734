"""
Upload Model with Lifecycle State Tracking

One row per uploaded file. Tracks:
- The source descriptor and the staging file
- The template snapshot the pipeline ran with
- Per-stage status and timing
- Error state and the final storage location
"""

import uuid
from enum import Enum
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, Dict, Any, FrozenSet
from datetime import datetime

from imprint.core.exceptions import InvalidTransitionError
from imprint.modules.templates.models import utc_now


class UploadStatus(str, Enum):
    """Upload lifecycle states."""
    PENDING = "pending"           # Record created, staging file written
    PROCESSING = "processing"     # Pipeline or storage hand-off running
    COMPLETED = "completed"       # Stored; identifier and URL persisted
    FAILED = "failed"             # A stage or the storage hand-off failed


class StageStatus(str, Enum):
    """Individual stage status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ResourceType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


# completed and failed are terminal
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    UploadStatus.PENDING.value: frozenset({UploadStatus.PROCESSING.value, UploadStatus.FAILED.value}),
    UploadStatus.PROCESSING.value: frozenset({UploadStatus.COMPLETED.value, UploadStatus.FAILED.value}),
    UploadStatus.COMPLETED.value: frozenset(),
    UploadStatus.FAILED.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Whether the state machine has an edge current -> target."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class Upload(SQLModel, table=True):
    """
    Upload lifecycle record.

    Only the upload lifecycle service mutates these rows; the pipeline
    never touches the database.
    """
    __tablename__ = "uploads"

    # Primary Key
    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )

    # Source Descriptor
    original_filename: str
    mime_type: str
    file_size: int = Field(default=0)
    staging_path: Optional[str] = None
    resource_type: str = Field(default=ResourceType.IMAGE.value)

    # Template Linkage (absent => pass-through)
    template_id: Optional[str] = Field(default=None, foreign_key="templates.id", index=True)
    template_snapshot: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    # Lifecycle
    status: str = Field(default=UploadStatus.PENDING.value, index=True)
    current_stage: Optional[str] = None

    # Dimensions
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    processed_width: Optional[int] = None
    processed_height: Optional[int] = None
    processed_format: Optional[str] = None
    processed_size: Optional[int] = None

    # Destination Descriptor (success only)
    storage_identifier: Optional[str] = None
    storage_url: Optional[str] = None

    # Error Tracking (failed only)
    error_message: Optional[str] = None
    error_stage: Optional[str] = None

    # Per-Stage Metadata
    # Structure: {stage_name: {status, duration_ms, started_at, completed_at, ...}}
    stages_metadata: Dict[str, Any] = Field(default={}, sa_column=Column(JSON))

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True), index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    started_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    @property
    def is_terminal(self) -> bool:
        return self.status in (UploadStatus.COMPLETED.value, UploadStatus.FAILED.value)

    def transition_to(self, target: UploadStatus):
        """Move along a state machine edge or raise InvalidTransitionError."""
        target_value = UploadStatus(target).value
        if not can_transition(self.status, target_value):
            raise InvalidTransitionError(self.status, target_value, upload_id=self.id)
        self.status = target_value
        self.updated_at = utc_now()

    def update_stage(
        self,
        stage: str,
        status: str,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ):
        """Update a specific stage's status and metadata."""
        # Create a copy to ensure SQLAlchemy detects the change
        current_metadata = dict(self.stages_metadata) if self.stages_metadata else {}

        stage_data = current_metadata.get(stage, {}).copy()
        stage_data["status"] = status

        if status == StageStatus.IN_PROGRESS.value:
            stage_data["started_at"] = utc_now().isoformat()
        elif status in [StageStatus.COMPLETED.value, StageStatus.FAILED.value]:
            stage_data["completed_at"] = utc_now().isoformat()

        if duration_ms is not None:
            stage_data["duration_ms"] = duration_ms

        if metadata:
            stage_data.update(metadata)

        if error:
            stage_data["error"] = error

        current_metadata[stage] = stage_data
        self.stages_metadata = current_metadata  # Replace dict to trigger update
        self.current_stage = stage
        self.updated_at = utc_now()

    def mark_processing(self):
        """Enter the processing state."""
        self.transition_to(UploadStatus.PROCESSING)
        self.started_at = utc_now()

    def mark_completed(
        self,
        storage_identifier: str,
        storage_url: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        output_format: Optional[str] = None,
        size: Optional[int] = None
    ):
        """Record the stored result; all destination fields land together."""
        self.transition_to(UploadStatus.COMPLETED)
        self.storage_identifier = storage_identifier
        self.storage_url = storage_url
        self.processed_width = width
        self.processed_height = height
        self.processed_format = output_format
        self.processed_size = size
        self.completed_at = utc_now()

    def mark_failed(self, error_message: str, error_stage: str):
        """Mark upload as failed."""
        self.transition_to(UploadStatus.FAILED)
        self.error_message = error_message
        self.error_stage = error_stage
        self.storage_identifier = None
        self.storage_url = None
        self.completed_at = utc_now()

        self.update_stage(error_stage, StageStatus.FAILED.value, error=error_message)

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {
            "id": self.id,
            "status": self.status,
            "current_stage": self.current_stage,
            "original_filename": self.original_filename,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "resource_type": self.resource_type,
            "template_id": self.template_id,
            "original": {
                "width": self.original_width,
                "height": self.original_height
            },
            "processed": {
                "width": self.processed_width,
                "height": self.processed_height,
                "format": self.processed_format,
                "size": self.processed_size
            } if self.processed_width is not None else None,
            "storage": {
                "identifier": self.storage_identifier,
                "url": self.storage_url
            } if self.storage_identifier else None,
            "error": {
                "message": self.error_message,
                "stage": self.error_stage
            } if self.error_message else None,
            "stages": self.stages_metadata,
            "template_snapshot": self.template_snapshot,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None
        }
