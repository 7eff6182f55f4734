"""
Template Model

A named, reusable bundle of transformation parameters. Columns are grouped
the way the pipeline consumes them: geometry, tone, frame, watermark, output.
"""

import uuid
from enum import Enum
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FitMode(str, Enum):
    """How the source aspect ratio reconciles with the target box."""
    COVER = "cover"
    CONTAIN = "contain"
    FILL = "fill"
    INSIDE = "inside"
    OUTSIDE = "outside"


class CropPosition(str, Enum):
    """Gravity used when cover trims overflow."""
    CENTER = "center"
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"


class WatermarkPosition(str, Enum):
    """Anchor for the watermark text."""
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"
    CENTER = "center"


class OutputFormat(str, Enum):
    """Encoders the pipeline can produce."""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"


class Template(SQLModel, table=True):
    """Persistent template row."""
    __tablename__ = "templates"

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )
    name: str = Field(index=True, unique=True, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)

    # Geometry
    width: int
    height: int
    fit: str = Field(default=FitMode.COVER.value)
    crop_position: str = Field(default=CropPosition.CENTER.value)
    crop_x: Optional[int] = None
    crop_y: Optional[int] = None
    crop_width: Optional[int] = None
    crop_height: Optional[int] = None
    background_color: Optional[str] = None

    # Tone
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    saturation: Optional[float] = None
    hue: Optional[float] = None
    blur: Optional[float] = None
    sharpen: Optional[float] = None

    # Frame
    box_enabled: bool = Field(default=False)
    box_color: str = Field(default="#ffffff")
    box_padding: int = Field(default=20)
    box_border_width: int = Field(default=0)
    box_border_color: str = Field(default="#000000")
    box_border_radius: int = Field(default=0)
    box_shadow_enabled: bool = Field(default=False)
    box_shadow_blur: int = Field(default=10)
    box_shadow_offset_x: int = Field(default=5)
    box_shadow_offset_y: int = Field(default=5)
    box_shadow_opacity: float = Field(default=0.3)
    box_shadow_color: str = Field(default="#000000")

    # Watermark
    watermark_enabled: bool = Field(default=False)
    watermark_text: Optional[str] = Field(default=None, max_length=100)
    watermark_position: str = Field(default=WatermarkPosition.BOTTOM_RIGHT.value)
    watermark_opacity: float = Field(default=0.5)
    watermark_size: Optional[int] = None

    # Output
    format: str = Field(default=OutputFormat.JPEG.value)
    quality: int = Field(default=80)
    progressive: bool = Field(default=True)
    optimize_scans: bool = Field(default=True)
    strip_metadata: bool = Field(default=True)

    # Flags
    is_active: bool = Field(default=True, index=True)
    is_default: bool = Field(default=False, index=True)

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))

    def parameters(self) -> Dict[str, Any]:
        """Transformation parameters only, without identity or bookkeeping."""
        data = self.model_dump()
        for key in ("id", "created_at", "updated_at"):
            data.pop(key, None)
        return data
